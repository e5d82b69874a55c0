"""
inspect_dataset.py

Load a transactions CSV and print key details (shape, types, missing values,
class balance) before training. Uses the same loader as the fraud workflow.
"""

import argparse
from pathlib import Path

from nnlab.data.loader import load_transactions
from nnlab.data.preprocessor import format_target_summary, summarize_targets


def inspect_dataset(csv_path: str, target_col: str = "Class", summary_path: str = "data/processed/dataset_summary.txt"):
    df = load_transactions(csv_path, target_col=target_col, drop_cols=())
    print("\nDataset Loaded Successfully!")
    print("=" * 60)

    print(f"Shape: {df.shape}")
    print("\nColumns:")
    print(df.columns.tolist())

    print("\nMissing Values (non-zero only):")
    missing = df.isna().sum()
    print(missing[missing > 0] if missing.any() else "none")

    print("\nSummary Statistics:")
    print(df.describe())

    summary = summarize_targets(df[target_col].to_numpy(), name="Full dataset")
    print("\n" + format_target_summary(summary))

    Path(summary_path).parent.mkdir(parents=True, exist_ok=True)
    with open(summary_path, "w") as f:
        f.write("Dataset Summary\n")
        f.write("=" * 50 + "\n")
        f.write(f"Shape: {df.shape}\n\n")
        f.write("Columns:\n")
        f.write(str(df.columns.tolist()) + "\n\n")
        f.write("Missing Values:\n")
        f.write(str(df.isna().sum()) + "\n\n")
        f.write("Numeric Summary:\n")
        f.write(str(df.describe()) + "\n\n")
        f.write(format_target_summary(summary) + "\n")
    print(f"\nSummary saved to {summary_path}")

    # Optionally return for notebook use
    return df


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Print summary statistics for a transactions CSV")
    parser.add_argument("csv", help="Path to the transactions CSV")
    parser.add_argument("--target", default="Class", help="Target column name")
    args = parser.parse_args()
    inspect_dataset(args.csv, target_col=args.target)
