"""
preprocessor.py
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

import joblib
import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


@dataclass
class PreparedTransactions:
    x_train: np.ndarray
    y_train: np.ndarray
    x_test: np.ndarray
    y_test: np.ndarray
    scale: np.ndarray
    feature_names: list


def split_train_test(df: pd.DataFrame, train_fraction: float = 0.8) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Ordered split: the first `train_fraction` of rows train, the rest test.
    Rows are not shuffled so the held-out set is the tail of the file.
    """
    if not 0.0 < train_fraction < 1.0:
        raise ValueError(f"train_fraction must be in (0, 1), got {train_fraction}")
    n = len(df)
    n_train = int(np.floor(n * train_fraction))
    if n_train == 0 or n_train == n:
        raise ValueError(f"Split of {n} rows at {train_fraction} leaves an empty train or test set.")
    train = df.iloc[:n_train].reset_index(drop=True)
    test = df.iloc[n_train:].reset_index(drop=True)
    return train, test


def split_features_targets(df: pd.DataFrame, target_col: str = "Class") -> Tuple[np.ndarray, np.ndarray]:
    if target_col not in df.columns:
        raise KeyError(f"Target column '{target_col}' not found.")
    x = df.drop(columns=[target_col]).to_numpy(dtype=np.float32)
    y = df[target_col].to_numpy(dtype=np.float32)
    return x, y


def fit_max_abs(x: np.ndarray) -> np.ndarray:
    """Per-column max absolute value. All-zero columns get a scale of 1."""
    x = np.asarray(x, dtype=np.float32)
    if x.ndim != 2:
        raise ValueError(f"Expected a 2D feature matrix, got shape {x.shape}")
    if x.shape[0] == 0:
        raise ValueError("Cannot fit a scale on an empty feature matrix.")
    scale = np.abs(x).max(axis=0)
    scale[scale == 0] = 1.0
    return scale.astype(np.float32)


def normalize(x: np.ndarray, scale: np.ndarray) -> np.ndarray:
    x = np.asarray(x, dtype=np.float32)
    if x.shape[-1] != scale.shape[-1]:
        raise ValueError(f"Feature count {x.shape[-1]} does not match scale length {scale.shape[-1]}")
    return x / scale


def class_counts(y: np.ndarray) -> Tuple[int, int]:
    """Return (legit, fraud) counts for a 0/1 target vector."""
    y = np.asarray(y).reshape(-1)
    fraud = int(np.sum(y == 1))
    legit = int(y.size - fraud)
    return legit, fraud


def summarize_targets(y: np.ndarray, name: str = "Training set") -> Dict[str, object]:
    legit, fraud = class_counts(y)
    total = legit + fraud
    pct = 100.0 * fraud / total if total else 0.0
    return {"name": name, "total": total, "fraud": fraud, "legit": legit, "fraud_pct": pct}


def format_target_summary(summary: Dict[str, object]) -> str:
    return (f"{summary['name']}: {summary['fraud']} fraud of {summary['total']} "
            f"({summary['fraud_pct']:.3f}%)")


def prepare_transactions(df: pd.DataFrame,
                         target_col: str = "Class",
                         train_fraction: float = 0.8,
                         scaler_path: Optional[str] = None) -> PreparedTransactions:
    """
    Split, fit the max-abs scale on the train part and apply it to both parts.
    The scale vector is written with joblib when `scaler_path` is given.
    """
    train_df, test_df = split_train_test(df, train_fraction=train_fraction)
    x_train, y_train = split_features_targets(train_df, target_col)
    x_test, y_test = split_features_targets(test_df, target_col)

    scale = fit_max_abs(x_train)
    x_train = normalize(x_train, scale)
    x_test = normalize(x_test, scale)

    if scaler_path:
        Path(scaler_path).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(scale, scaler_path)
        logger.info(f"Saved feature scale to {scaler_path}")

    feature_names = [c for c in df.columns if c != target_col]
    return PreparedTransactions(x_train, y_train, x_test, y_test, scale, feature_names)


def images_to_unit_interval(images: np.ndarray) -> np.ndarray:
    """uint8 pixels -> float32 in [0, 1]. Float input already in range is passed through."""
    images = np.asarray(images)
    if np.issubdtype(images.dtype, np.integer):
        return images.astype(np.float32) / 255.0
    images = images.astype(np.float32)
    if images.size and images.max() > 1.0:
        images = images / 255.0
    return images
