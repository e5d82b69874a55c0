"""
Loads the transactions CSV (fraud pipeline) and the Fashion-MNIST images (VAE pipeline).
"""

import logging
from pathlib import Path
from typing import Iterable, Optional, Tuple

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def _standardize_column_names(df: pd.DataFrame) -> pd.DataFrame:
    """Strip stray whitespace and quotes from column names."""
    df = df.copy()
    df.columns = [str(c).strip().strip('"') for c in df.columns]
    return df


def load_transactions(path: str,
                      target_col: str = "Class",
                      drop_cols: Iterable[str] = ("Time",)) -> pd.DataFrame:
    """
    Read the credit-card transactions CSV.

    Feature columns are coerced to float and the target to int. Columns listed in
    `drop_cols` are removed when present.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Transactions file not found at {p}.")
    df = pd.read_csv(p)
    df = _standardize_column_names(df)

    if target_col not in df.columns:
        raise KeyError(f"Target column '{target_col}' not found in columns: {list(df.columns)}")

    to_drop = [c for c in drop_cols if c in df.columns and c != target_col]
    if to_drop:
        df = df.drop(columns=to_drop)

    feature_cols = [c for c in df.columns if c != target_col]
    df[feature_cols] = df[feature_cols].astype(np.float32)
    df[target_col] = df[target_col].astype(int)
    logger.info(f"Loaded {len(df)} transactions with {len(feature_cols)} features from {p}")
    return df


def load_fashion_mnist(root: str = "data/raw", train: bool = True, download: bool = True) -> Tuple[np.ndarray, np.ndarray]:
    """Fetch Fashion-MNIST through torchvision. Returns uint8 images (N, 28, 28) and int labels."""
    try:
        from torchvision.datasets import FashionMNIST
    except ImportError as e:
        raise ImportError("torchvision not installed. Run: pip install torchvision") from e

    ds = FashionMNIST(root=root, train=train, download=download)
    images = ds.data.numpy().astype(np.uint8)
    labels = ds.targets.numpy().astype(np.int64)
    split = "train" if train else "test"
    logger.info(f"Loaded Fashion-MNIST {split} split: {images.shape[0]} images")
    return images, labels


def load_local_images(path: str, split: Optional[str] = None) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Load images from an .npz archive.

    With `split=None` the archive holds `images` and optional `labels`. With
    `split="train"` or `"test"` it must hold `<split>_images` and optional `<split>_labels`.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Local image archive not found at {p}.")
    prefix = f"{split}_" if split else ""
    with np.load(p) as archive:
        if f"{prefix}images" not in archive:
            raise KeyError(f"Archive {p} has no '{prefix}images' array (found {list(archive.keys())})")
        images = archive[f"{prefix}images"]
        labels = archive[f"{prefix}labels"] if f"{prefix}labels" in archive else None
    if images.ndim == 4 and images.shape[1] == 1:
        images = images[:, 0]
    if images.ndim != 3:
        raise ValueError(f"Expected images of shape (N, H, W), got {images.shape}")
    logger.info(f"Loaded {images.shape[0]} {prefix}images from {p}")
    return images, labels


def load_images(root: str = "data/raw",
                train: bool = True,
                local_path: Optional[str] = None,
                download: bool = True) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Unified loader: torchvision download first, then the local archive fallback.
    The archive must keep the splits apart (`train_images` / `test_images`).
    """
    if local_path is None:
        return load_fashion_mnist(root=root, train=train, download=download)
    try:
        return load_fashion_mnist(root=root, train=train, download=download)
    except (ImportError, RuntimeError, OSError) as e:
        logger.warning(f"Fashion-MNIST download failed ({e}); falling back to {local_path}")
        return load_local_images(local_path, split="train" if train else "test")
