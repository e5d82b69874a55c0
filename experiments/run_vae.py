"""
VAE workflow
------------
Fashion-MNIST -> (optional) plain autoencoder baseline -> variational autoencoder
-> reconstruction metrics -> reconstructions, prior samples and latent interpolation.

Ctrl-C during training stops after the current iteration and still renders results.
"""

import argparse
import sys
from pathlib import Path

import torch

from nnlab.data.dataset import ImageDataset
from nnlab.data.loader import load_images
from nnlab.models.vae import Autoencoder, VariationalAutoencoder
from nnlab.training.evaluator import (
    evaluate_reconstruction,
    plot_interpolation,
    plot_loss,
    plot_reconstructions,
    plot_samples,
    reconstruct,
    save_metrics_csv,
    save_metrics_json,
)
from nnlab.training.trainer import StopControl, train_autoencoder, train_vae
from nnlab.utils.config import get_cfg_value, load_config, merge_overrides
from nnlab.utils.logger import get_logger


def _train_with_stop(train_fn, model, train_ds, cfg, args, save_path=None):
    stop = StopControl()
    stop.install_signal_handler()
    try:
        return train_fn(model, train_ds, cfg, handlers=[stop], device=args.device,
                        save_path=save_path, seed=int(cfg.get("seed", 0)))
    finally:
        stop.restore_signal_handler()


def main(args) -> int:
    cfg = load_config(args.config)
    cfg = merge_overrides(cfg, "training", {"epochs": 1 if args.quick else args.epochs})

    results_dir = Path(get_cfg_value(cfg, ["output", "results_dir"], "results"))
    logger = get_logger("run_vae", logfile=str(results_dir / "logs" / "vae_train_log.txt"))
    logger.info(f"Starting VAE workflow with config {args.config}")

    # ------------------------------------------------------------------ #
    # Load
    # ------------------------------------------------------------------ #
    root = get_cfg_value(cfg, ["data", "root"], "data/raw")
    local_archive = get_cfg_value(cfg, ["data", "local_archive"])
    train_images, train_labels = load_images(root=root, train=True, local_path=local_archive)
    test_images, test_labels = load_images(root=root, train=False, local_path=local_archive)
    if args.quick:
        train_images, test_images = train_images[:2000], test_images[:500]
        train_labels = train_labels[:2000] if train_labels is not None else None
        test_labels = test_labels[:500] if test_labels is not None else None
        logger.info("Using QUICK mode (2000 train / 500 test images, 1 epoch).")
    train_ds = ImageDataset(train_images, train_labels)
    test_ds = ImageDataset(test_images, test_labels)
    print(f"Training images: {len(train_ds)}, test images: {len(test_ds)}")

    train_cfg = cfg.get("training", {})
    latent_dim = int(get_cfg_value(cfg, ["model", "latent_dim"], 10))
    encoder_hidden = tuple(get_cfg_value(cfg, ["model", "encoder_hidden"], [256, 128]))
    decoder_hidden = tuple(get_cfg_value(cfg, ["model", "decoder_hidden"], [128, 256]))
    image_shape = tuple(train_ds[0][0].shape)
    show = not args.no_show
    metrics = {}

    # ------------------------------------------------------------------ #
    # Plain autoencoder baseline
    # ------------------------------------------------------------------ #
    if get_cfg_value(cfg, ["model", "train_plain_autoencoder"], True):
        ae = Autoencoder(latent_dim, image_shape, encoder_hidden, decoder_hidden)
        ae_history = _train_with_stop(train_autoencoder, ae, train_ds, train_cfg, args)
        ae_metrics = evaluate_reconstruction(ae, test_ds, device=args.device)
        metrics["autoencoder_mse"] = ae_metrics["loss"]
        logger.info(f"Autoencoder test MSE: {ae_metrics['loss']:.6f}")
        plot_loss(ae_history, model_name="autoencoder", show=show)

    # ------------------------------------------------------------------ #
    # Variational autoencoder
    # ------------------------------------------------------------------ #
    vae = VariationalAutoencoder(latent_dim, image_shape, encoder_hidden, decoder_hidden)
    history = _train_with_stop(train_vae, vae, train_ds, train_cfg, args,
                               save_path=get_cfg_value(cfg, ["output", "checkpoint"]))
    if history["halted"]:
        logger.info(f"VAE training stopped manually after {history['epochs_run']} epoch(s)")

    vae_metrics = evaluate_reconstruction(vae, test_ds, beta=float(train_cfg.get("beta", 1.0)),
                                          device=args.device)
    metrics.update({f"vae_{k}": v for k, v in vae_metrics.items()})
    logger.info(f"VAE test metrics: {vae_metrics}")
    print(f"VAE test loss: {vae_metrics['loss']:.3f} "
          f"(reconstruction {vae_metrics['reconstruction']:.3f}, KL {vae_metrics['kl']:.3f})")

    save_metrics_json(metrics, str(results_dir / "metrics" / "metrics_vae.json"))
    save_metrics_csv(metrics, str(results_dir / "metrics_summary_vae.csv"))

    # ------------------------------------------------------------------ #
    # Render
    # ------------------------------------------------------------------ #
    n_rec = int(get_cfg_value(cfg, ["evaluation", "n_reconstructions"], 10))
    originals = torch.stack([test_ds[i][0] for i in range(min(n_rec, len(test_ds)))])
    plot_loss(history, model_name="vae", keys=("train_loss", "train_reconstruction", "train_kl"), show=show)
    plot_reconstructions(originals, reconstruct(vae, originals), model_name="vae", show=show)

    generator = torch.Generator().manual_seed(int(train_cfg.get("seed", 0)))
    plot_samples(vae.sample(int(get_cfg_value(cfg, ["evaluation", "n_samples"], 32)), generator=generator),
                 model_name="vae", show=show)

    i, j = get_cfg_value(cfg, ["evaluation", "interpolation_pair"], [0, 1])
    steps = int(get_cfg_value(cfg, ["evaluation", "interpolation_steps"], 10))
    frames = vae.interpolate(test_ds[i][0], test_ds[j][0], steps=steps)
    plot_interpolation(frames, model_name="vae", show=show)
    logger.info("All plots saved under results/figures/vae/")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Train a VAE on Fashion-MNIST and render results")
    parser.add_argument("--config", default="config/vae.yaml", help="YAML config path")
    parser.add_argument("--epochs", type=int, default=None, help="Override training.epochs")
    parser.add_argument("--device", default=None, help="cpu | cuda (default: auto)")
    parser.add_argument("--quick", action="store_true", help="Use small dataset for debugging")
    parser.add_argument("--no-show", action="store_true", help="Save figures without opening windows")
    return parser


if __name__ == "__main__":
    args = build_parser().parse_args()
    try:
        sys.exit(main(args))
    except (FileNotFoundError, KeyError, ValueError, RuntimeError):
        get_logger("run_vae").exception("VAE workflow failed")
        sys.exit(1)
