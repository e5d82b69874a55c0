import argparse
import subprocess
import sys
from pathlib import Path
from datetime import datetime
from typing import List, Tuple

from nnlab.utils.logger import get_logger

# Directories
RESULTS_DIR = Path("results")
LOG_DIR = RESULTS_DIR / "logs"

# Workflows to run sequentially
FRAUD_SCRIPT = "experiments/run_fraud.py"
VAE_SCRIPT = "experiments/run_vae.py"


def build_commands(args) -> List[Tuple[str, List[str]]]:
    """One command per workflow. Shared flags go to both, fraud-only flags only to the fraud script."""
    shared = []
    if args.quick:
        shared.append("--quick")
    if args.epochs is not None:
        shared += ["--epochs", str(args.epochs)]
    if args.device:
        shared += ["--device", args.device]
    if not args.show:
        shared.append("--no-show")

    fraud = [sys.executable, FRAUD_SCRIPT, *shared]
    if args.csv:
        fraud += ["--csv", args.csv]
    if args.validate:
        fraud.append("--validate")
    vae = [sys.executable, VAE_SCRIPT, *shared]
    return [(FRAUD_SCRIPT, fraud), (VAE_SCRIPT, vae)]


def main(args) -> int:
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    logfile = LOG_DIR / f"run_all_{timestamp}.txt"
    logger = get_logger("run_all", logfile=str(logfile))

    logger.info("Starting batch experiment runs...")
    failed = []
    for script, cmd in build_commands(args):
        logger.info(f"=== Running workflow: {script} ===")
        try:
            subprocess.run(cmd, check=True)
            logger.info(f"Completed {script}")
        except subprocess.CalledProcessError as e:
            logger.error(f"Error running {script}: {e}")
            failed.append(script)

    logger.info("All experiments finished.")
    summary_path = RESULTS_DIR / "outputs_summary.txt"
    with open(summary_path, "w") as out:
        for f in sorted((RESULTS_DIR / "metrics").glob("*.json")):
            out.write(f"{f.name}\n")
            with open(f, "r") as jf:
                out.write(jf.read() + "\n\n")
    logger.info(f"Combined summary written to {summary_path}")
    return 1 if failed else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the fraud and VAE workflows one after the other")
    parser.add_argument("--epochs", type=int, default=None, help="Override training.epochs in both workflows")
    parser.add_argument("--device", default=None, help="cpu | cuda (default: auto)")
    parser.add_argument("--quick", action="store_true", help="Use small datasets for debugging")
    parser.add_argument("--show", action="store_true", help="Open figure windows (saved only by default)")
    parser.add_argument("--no-show", dest="show", action="store_false", help="Save figures without opening windows")
    parser.add_argument("--csv", default=None, help="Transactions CSV for the fraud workflow")
    parser.add_argument("--validate", action="store_true", help="Track test loss every epoch (fraud workflow)")
    return parser


if __name__ == "__main__":
    sys.exit(main(build_parser().parse_args()))
