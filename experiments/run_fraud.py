"""
Fraud classifier workflow
-------------------------
CSV -> ordered train/test split -> max-abs normalization -> dense classifier
trained on class-weighted BCE -> confusion-matrix evaluation -> report + plots.

Ctrl-C during training stops after the current iteration and still evaluates.
"""

import argparse
import sys
from pathlib import Path

from nnlab.data.dataset import TransactionDataset
from nnlab.data.loader import load_transactions
from nnlab.data.preprocessor import format_target_summary, prepare_transactions, summarize_targets
from nnlab.models.classifier import FraudClassifier
from nnlab.training.evaluator import (
    evaluate_classifier,
    format_fraud_report,
    plot_confusion_matrix,
    plot_loss,
    save_metrics_csv,
    save_metrics_json,
)
from nnlab.training.trainer import StopControl, train_classifier
from nnlab.utils.config import get_cfg_value, load_config, merge_overrides
from nnlab.utils.logger import get_logger

MODEL_NAME = "fraud"


def main(args) -> int:
    cfg = load_config(args.config)
    cfg = merge_overrides(cfg, "data", {"csv": args.csv})
    cfg = merge_overrides(cfg, "training", {"epochs": 2 if args.quick else args.epochs})

    results_dir = Path(get_cfg_value(cfg, ["output", "results_dir"], "results"))
    logger = get_logger(f"run_{MODEL_NAME}", logfile=str(results_dir / "logs" / f"{MODEL_NAME}_train_log.txt"))
    logger.info(f"Starting {MODEL_NAME} workflow with config {args.config}")

    # ------------------------------------------------------------------ #
    # Load and preprocess
    # ------------------------------------------------------------------ #
    target_col = get_cfg_value(cfg, ["data", "target_col"], "Class")
    df = load_transactions(
        get_cfg_value(cfg, ["data", "csv"]),
        target_col=target_col,
        drop_cols=get_cfg_value(cfg, ["data", "drop_cols"], ["Time"]),
    )
    if args.quick:
        df = df.head(20000)
        logger.info("Using QUICK mode (first 20000 rows, 2 epochs).")

    data = prepare_transactions(
        df,
        target_col=target_col,
        train_fraction=float(get_cfg_value(cfg, ["data", "train_fraction"], 0.8)),
        scaler_path=get_cfg_value(cfg, ["output", "scaler"]),
    )
    train_ds = TransactionDataset(data.x_train, data.y_train)
    test_ds = TransactionDataset(data.x_test, data.y_test)

    print(format_target_summary(summarize_targets(data.y_train, "Training set")))
    print(format_target_summary(summarize_targets(data.y_test, "Test set")))

    # ------------------------------------------------------------------ #
    # Build + train
    # ------------------------------------------------------------------ #
    model = FraudClassifier(
        n_features=train_ds.n_features,
        hidden=int(get_cfg_value(cfg, ["model", "hidden"], 256)),
        dropout=float(get_cfg_value(cfg, ["model", "dropout"], 0.3)),
    )
    logger.info(f"Built model: {model.__class__.__name__} with {train_ds.n_features} input features")

    train_cfg = cfg.get("training", {})
    stop = StopControl()
    stop.install_signal_handler()
    try:
        history = train_classifier(
            model,
            train_ds,
            train_cfg,
            val_dataset=test_ds if args.validate else None,
            handlers=[stop],
            device=args.device,
            save_path=get_cfg_value(cfg, ["output", "checkpoint"]),
            seed=int(train_cfg.get("seed", 0)),
        )
    finally:
        stop.restore_signal_handler()
    if history["halted"]:
        logger.info(f"Training stopped manually after {history['epochs_run']} epoch(s)")
    logger.info("Training complete")

    # ------------------------------------------------------------------ #
    # Evaluate
    # ------------------------------------------------------------------ #
    result = evaluate_classifier(
        model,
        test_ds,
        batch_size=int(train_cfg.get("batch_size", 2048)),
        threshold=float(get_cfg_value(cfg, ["evaluation", "threshold"], 0.5)),
        device=args.device,
    )
    for line in format_fraud_report(result):
        print(line)
    logger.info(f"Metrics for {MODEL_NAME}: {result}")

    save_metrics_json(result, str(results_dir / "metrics" / f"metrics_{MODEL_NAME}.json"))
    save_metrics_csv(result, str(results_dir / "metrics_summary.csv"))

    show = not args.no_show
    plot_loss(history, model_name=MODEL_NAME, show=show)
    plot_confusion_matrix(result, model_name=MODEL_NAME, show=show)
    logger.info(f"All plots saved under results/figures/{MODEL_NAME}/")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Train and evaluate the fraud classifier")
    parser.add_argument("--config", default="config/fraud.yaml", help="YAML config path")
    parser.add_argument("--csv", default=None, help="Transactions CSV (overrides data.csv)")
    parser.add_argument("--epochs", type=int, default=None, help="Override training.epochs")
    parser.add_argument("--device", default=None, help="cpu | cuda (default: auto)")
    parser.add_argument("--validate", action="store_true", help="Track test loss every epoch")
    parser.add_argument("--quick", action="store_true", help="Use small dataset for debugging")
    parser.add_argument("--no-show", action="store_true", help="Save figures without opening windows")
    return parser


if __name__ == "__main__":
    args = build_parser().parse_args()
    try:
        sys.exit(main(args))
    except (FileNotFoundError, KeyError, ValueError):
        get_logger(f"run_{MODEL_NAME}").exception("Fraud workflow failed")
        sys.exit(1)
