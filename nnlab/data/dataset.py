from typing import Optional
import numpy as np
import torch
from torch.utils.data import Dataset

from nnlab.data.preprocessor import images_to_unit_interval


class TransactionDataset(Dataset):
    def __init__(self, features: np.ndarray, targets: np.ndarray):

        features = np.asarray(features, dtype=np.float32)
        targets = np.asarray(targets, dtype=np.float32).reshape(-1, 1)
        if features.ndim != 2:
            raise ValueError(f"features must be 2D (n, n_features), got {features.shape}")
        if len(features) != len(targets):
            raise ValueError(f"features ({len(features)}) and targets ({len(targets)}) differ in length")
        self.x = features
        self.y = targets

    @property
    def n_features(self) -> int:
        return self.x.shape[1]

    def __len__(self):
        return len(self.y)

    def __getitem__(self, idx):
        x = torch.from_numpy(self.x[idx])   # (n_features,)
        y = torch.from_numpy(self.y[idx])   # (1,)
        return x, y


class ImageDataset(Dataset):
    """Grayscale images as (1, H, W) float tensors in [0, 1]."""

    def __init__(self, images: np.ndarray, labels: Optional[np.ndarray] = None):
        images = images_to_unit_interval(images)
        if images.ndim != 3:
            raise ValueError(f"images must be (N, H, W), got {images.shape}")
        self.images = images
        if labels is None:
            labels = np.full(len(images), -1, dtype=np.int64)
        self.labels = np.asarray(labels, dtype=np.int64)

    def __len__(self):
        return len(self.images)

    def __getitem__(self, idx):
        x = torch.from_numpy(self.images[idx]).unsqueeze(0)   # (1, H, W)
        label = torch.tensor(self.labels[idx], dtype=torch.long)
        return x, label
