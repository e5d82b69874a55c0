from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import torch
import matplotlib.pyplot as plt
import seaborn as sns
from sklearn.metrics import confusion_matrix
from torch.utils.data import DataLoader

from nnlab.training.losses import vae_loss

logger = logging.getLogger(__name__)


def _make_model_plot_path(base_dir: str, model_name: str, plot_name: str) -> str:

    base = Path(base_dir) / model_name
    base.mkdir(parents=True, exist_ok=True)
    fname = f"{plot_name}_{model_name}.png"
    return str(base / fname)


def _show_or_save(fig: plt.Figure, save_path: Optional[str], show: bool) -> None:
    """
    Save figure to save_path   and show (if show=True).
    If both, it will save then show.
    """
    if save_path:
        save_path = str(save_path)
        outdir = os.path.dirname(save_path)
        if outdir:
            os.makedirs(outdir, exist_ok=True)
        fig.savefig(save_path, bbox_inches="tight", dpi=150)
        logger.info(f"Saved plot: {save_path}")
    if show:
        plt.show()
    else:
        plt.close(fig)


def _resolve_device(device: Optional[str]) -> torch.device:
    if device is None:
        device = "cuda" if torch.cuda.is_available() else "cpu"
    return torch.device(device)


# --------------------------------------------------------------------------- #
# Classifier evaluation
# --------------------------------------------------------------------------- #
def predict_proba(model: torch.nn.Module,
                  data_loader: DataLoader,
                  device: Optional[str] = None) -> Tuple[np.ndarray, np.ndarray]:
    """Run the classifier over a loader yielding (x, y); returns flat (y_true, y_prob)."""
    device = _resolve_device(device)
    model.to(device)
    model.eval()

    true_batches: List[np.ndarray] = []
    prob_batches: List[np.ndarray] = []
    with torch.no_grad():
        for x, y in data_loader:
            probs = model(x.to(device))
            true_batches.append(y.reshape(-1).cpu().numpy())
            prob_batches.append(probs.reshape(-1).cpu().numpy())

    if not true_batches:
        raise ValueError("DataLoader yielded no batches.")
    return np.concatenate(true_batches), np.concatenate(prob_batches)


def confusion_counts(y_true: np.ndarray, y_pred: np.ndarray) -> Dict[str, int]:
    """TP/TN/FP/FN with fraud (1) as the positive class. Counts always sum to len(y_true)."""
    y_true = np.asarray(y_true).reshape(-1).astype(int)
    y_pred = np.asarray(y_pred).reshape(-1).astype(int)
    if y_true.shape != y_pred.shape:
        raise ValueError(f"y_true {y_true.shape} and y_pred {y_pred.shape} differ in shape")
    if y_true.size == 0:
        return {"true_positives": 0, "true_negatives": 0, "false_positives": 0, "false_negatives": 0}
    tn, fp, fn, tp = confusion_matrix(y_true, y_pred, labels=[0, 1]).ravel()
    return {
        "true_positives": int(tp),
        "true_negatives": int(tn),
        "false_positives": int(fp),
        "false_negatives": int(fn),
    }


def _safe_div(num: float, den: float) -> float:
    return float(num) / float(den) if den else 0.0


def classification_metrics(counts: Dict[str, int]) -> Dict[str, float]:
    """Precision, recall, F1 and accuracy from confusion counts; 0.0 wherever undefined."""
    tp = counts["true_positives"]
    tn = counts["true_negatives"]
    fp = counts["false_positives"]
    fn = counts["false_negatives"]
    precision = _safe_div(tp, tp + fp)
    recall = _safe_div(tp, tp + fn)
    f1 = _safe_div(2 * precision * recall, precision + recall)
    accuracy = _safe_div(tp + tn, tp + tn + fp + fn)
    return {"precision": precision, "recall": recall, "f1": f1, "accuracy": accuracy}


def evaluate_classifier(model: torch.nn.Module,
                        dataset,
                        batch_size: int = 2048,
                        threshold: float = 0.5,
                        device: Optional[str] = None) -> Dict[str, Any]:
    loader = DataLoader(dataset, batch_size=batch_size, shuffle=False)
    y_true, y_prob = predict_proba(model, loader, device=device)
    y_pred = (y_prob > threshold).astype(int)
    counts = confusion_counts(y_true, y_pred)
    result: Dict[str, Any] = dict(counts)
    result.update(classification_metrics(counts))
    result["total"] = int(y_true.size)
    return result


def format_fraud_report(counts: Dict[str, int]) -> List[str]:
    """Console summary of a confusion matrix in fraud terms."""
    tp = counts["true_positives"]
    tn = counts["true_negatives"]
    fp = counts["false_positives"]
    fn = counts["false_negatives"]
    fraud = tp + fn
    legit = tn + fp
    return [
        f"Fraud declined (caught): {tp} of {fraud} ({100.0 * _safe_div(tp, fraud):.2f}%)",
        f"Fraud accepted (missed): {fn} of {fraud} ({100.0 * _safe_div(fn, fraud):.2f}%)",
        f"Legit declined (false alarms): {fp} of {legit} ({100.0 * _safe_div(fp, legit):.2f}%)",
        f"Legit accepted: {tn} of {legit} ({100.0 * _safe_div(tn, legit):.2f}%)",
    ]


# --------------------------------------------------------------------------- #
# Autoencoder evaluation
# --------------------------------------------------------------------------- #
def evaluate_reconstruction(model: torch.nn.Module,
                            dataset,
                            batch_size: int = 256,
                            beta: float = 1.0,
                            device: Optional[str] = None) -> Dict[str, float]:
    """
    Mean loss terms over `dataset`. A VAE reports loss/reconstruction/kl scored on its
    latent means, so repeated calls agree. A plain autoencoder reports mean squared error as `loss`.
    """
    device = _resolve_device(device)
    model.to(device)
    model.eval()
    loader = DataLoader(dataset, batch_size=batch_size, shuffle=False)
    variational = hasattr(model, "encode") and getattr(model.encoder, "variational", False)

    sums: Dict[str, float] = {}
    n_seen = 0
    with torch.no_grad():
        for batch in loader:
            x = batch[0].to(device)
            if variational:
                mean, log_var = model.encode(x)
                out = {"reconstruction": model.decode(mean), "mean": mean, "log_var": log_var}
                terms = vae_loss(out, x, beta=beta)
            else:
                terms = {"loss": torch.nn.functional.mse_loss(model(x), x)}
            bs = x.size(0)
            for k, v in terms.items():
                sums[k] = sums.get(k, 0.0) + float(v.item()) * bs
            n_seen += bs

    if n_seen == 0:
        raise ValueError("Dataset is empty.")
    return {k: v / n_seen for k, v in sums.items()}


def reconstruct(model: torch.nn.Module, images: torch.Tensor) -> torch.Tensor:
    """Reconstructions for a batch; the VAE decodes its latent means so the output is deterministic."""
    model.eval()
    with torch.no_grad():
        x = images.to(model.device)
        if hasattr(model, "encode") and getattr(model.encoder, "variational", False):
            mean, _ = model.encode(x)
            return model.decode(mean).cpu()
        return model(x).cpu()


# --------------------------------------------------------------------------- #
# Plots
# --------------------------------------------------------------------------- #
def plot_loss(
    history: Dict[str, List[float]],
    model_name: Optional[str] = None,
    keys: Sequence[str] = ("train_loss", "val_loss"),
    title: str = "Training / Validation Loss",
    save_path: Optional[str] = None,
    show: bool = True,
) -> Tuple[plt.Figure, plt.Axes]:
    """Plot per-epoch loss curves for whichever of `keys` are in history."""
    sns.set_style("whitegrid")
    fig, ax = plt.subplots(figsize=(8, 4))
    for key in keys:
        values = history.get(key)
        if values:
            ax.plot(range(1, len(values) + 1), values, label=key)
    ax.set_xlabel("Epoch")
    ax.set_ylabel("Loss")
    final_title = f"{model_name.upper()} | {title}" if model_name else title
    ax.set_title(final_title)
    ax.legend()
    ax.grid(True)

    if save_path is None and model_name:
        save_path = _make_model_plot_path("results/figures", model_name, "loss")
    _show_or_save(fig, save_path, show)
    return fig, ax


def plot_confusion_matrix(
    counts: Dict[str, int],
    model_name: Optional[str] = None,
    title: str = "Confusion Matrix",
    save_path: Optional[str] = None,
    show: bool = True,
) -> Tuple[plt.Figure, plt.Axes]:
    matrix = np.array([
        [counts["true_negatives"], counts["false_positives"]],
        [counts["false_negatives"], counts["true_positives"]],
    ])
    sns.set_style("white")
    fig, ax = plt.subplots(figsize=(5, 4))
    sns.heatmap(matrix, annot=True, fmt="d", cmap="Blues", cbar=False, ax=ax,
                xticklabels=["legit", "fraud"], yticklabels=["legit", "fraud"])
    ax.set_xlabel("Predicted")
    ax.set_ylabel("Actual")
    final_title = f"{model_name.upper()} | {title}" if model_name else title
    ax.set_title(final_title)

    if save_path is None and model_name:
        save_path = _make_model_plot_path("results/figures", model_name, "confusion")
    _show_or_save(fig, save_path, show)
    return fig, ax


def _to_numpy_images(images) -> np.ndarray:
    if isinstance(images, torch.Tensor):
        images = images.detach().cpu().numpy()
    images = np.asarray(images)
    if images.ndim == 4:
        images = images[:, 0]   # drop channel
    if images.ndim != 3:
        raise ValueError(f"Expected images of shape (N, H, W) or (N, 1, H, W), got {images.shape}")
    return images


def plot_image_grid(
    images,
    n_cols: int = 10,
    model_name: Optional[str] = None,
    plot_name: str = "images",
    title: Optional[str] = None,
    row_labels: Optional[Sequence[str]] = None,
    save_path: Optional[str] = None,
    show: bool = True,
) -> Tuple[plt.Figure, np.ndarray]:
    """Lay out grayscale images row-major in a grid with `n_cols` columns."""
    imgs = _to_numpy_images(images)
    n = len(imgs)
    if n == 0:
        raise ValueError("No images to plot.")
    n_cols = max(1, min(n_cols, n))
    n_rows = int(np.ceil(n / n_cols))

    fig, axes = plt.subplots(n_rows, n_cols, figsize=(1.2 * n_cols, 1.2 * n_rows), squeeze=False)
    for i, ax in enumerate(axes.flat):
        ax.axis("off")
        if i < n:
            ax.imshow(imgs[i], cmap="gray", vmin=0.0, vmax=1.0)
    if row_labels:
        for r, label in enumerate(row_labels[:n_rows]):
            axes[r, 0].set_title(label, fontsize=8, loc="left")
    if title:
        fig.suptitle(f"{model_name.upper()} | {title}" if model_name else title)

    if save_path is None and model_name:
        save_path = _make_model_plot_path("results/figures", model_name, plot_name)
    _show_or_save(fig, save_path, show)
    return fig, axes


def plot_reconstructions(originals, reconstructions, model_name: Optional[str] = None,
                         save_path: Optional[str] = None, show: bool = True):
    """Originals on the top row, reconstructions below."""
    top = _to_numpy_images(originals)
    bottom = _to_numpy_images(reconstructions)
    if len(top) != len(bottom):
        raise ValueError("originals and reconstructions must have the same length")
    return plot_image_grid(np.concatenate([top, bottom]), n_cols=len(top), model_name=model_name,
                           plot_name="reconstructions", title="Original (top) vs Reconstruction (bottom)",
                           save_path=save_path, show=show)


def plot_interpolation(frames, model_name: Optional[str] = None,
                       save_path: Optional[str] = None, show: bool = True):
    return plot_image_grid(frames, n_cols=len(frames), model_name=model_name, plot_name="interpolation",
                           title="Latent Interpolation", save_path=save_path, show=show)


def plot_samples(samples, n_cols: int = 8, model_name: Optional[str] = None,
                 save_path: Optional[str] = None, show: bool = True):
    return plot_image_grid(samples, n_cols=n_cols, model_name=model_name, plot_name="samples",
                           title="Samples from the Prior", save_path=save_path, show=show)


# --------------------------------------------------------------------------- #
# Persistence
# --------------------------------------------------------------------------- #
def save_metrics_csv(metrics: Dict[str, Any], path: str) -> None:
    """
    Append metrics dictionary as a row to CSV at `path`.
    Adds a timestamp column automatically.
    """
    metrics = dict(metrics)  # shallow copy
    metrics["timestamp"] = pd.Timestamp.now().isoformat()
    df = pd.DataFrame([metrics])
    outdir = os.path.dirname(path)
    if outdir:
        os.makedirs(outdir, exist_ok=True)
    header = not os.path.exists(path)
    df.to_csv(path, mode="a" if not header else "w", header=header, index=False)
    logger.info(f"Appended metrics to {path}")


def save_metrics_json(metrics: Dict[str, Any], path: str) -> None:
    outdir = os.path.dirname(path)
    if outdir:
        os.makedirs(outdir, exist_ok=True)
    with open(path, "w") as f:
        json.dump(metrics, f, indent=2)
    logger.info(f"Saved metrics to {path}")
