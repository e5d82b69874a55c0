"""Loss terms: class-weighted BCE for the fraud classifier, reconstruction + KL for the VAE."""
from typing import Dict, Tuple

import numpy as np
import torch
import torch.nn.functional as F


def class_weights(y) -> Tuple[float, float]:
    """
    Inverse class frequencies (negative_weight, positive_weight) = (1 / legit, 1 / fraud).
    A class absent from `y` gets weight 0 instead of dividing by zero.
    """
    if isinstance(y, torch.Tensor):
        y = y.detach().cpu().numpy()
    y = np.asarray(y).reshape(-1)
    fraud = float(np.sum(y == 1))
    legit = float(y.size - fraud)
    neg = 1.0 / legit if legit > 0 else 0.0
    pos = 1.0 / fraud if fraud > 0 else 0.0
    return neg, pos


def batch_class_weights(target: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
    """Per-batch inverse frequencies as tensors, 0 for a class missing from the batch."""
    target = target.reshape(-1)
    fraud = target.sum()
    legit = target.numel() - fraud
    pos = torch.where(fraud > 0, 1.0 / fraud.clamp(min=1.0), torch.zeros_like(fraud))
    neg = torch.where(legit > 0, 1.0 / legit.clamp(min=1.0), torch.zeros_like(legit))
    return neg, pos


def weighted_binary_cross_entropy(pred: torch.Tensor,
                                  target: torch.Tensor,
                                  negative_weight=1.0,
                                  positive_weight=1.0,
                                  eps: float = 1e-7) -> torch.Tensor:
    """Mean of -(w_pos * t * log p + w_neg * (1 - t) * log(1 - p)) with p clamped away from 0 and 1."""
    if pred.shape != target.shape:
        target = target.view_as(pred)
    p = pred.clamp(eps, 1.0 - eps)
    loss = -(positive_weight * target * torch.log(p) + negative_weight * (1.0 - target) * torch.log(1.0 - p))
    return loss.mean()


def kl_divergence(mean: torch.Tensor, log_var: torch.Tensor) -> torch.Tensor:
    """KL(N(mean, exp(log_var)) || N(0, I)), summed over latent dims, averaged over the batch."""
    kl = -0.5 * torch.sum(1.0 + log_var - mean.pow(2) - log_var.exp(), dim=-1)
    return kl.mean()


def reconstruction_loss(reconstruction: torch.Tensor, target: torch.Tensor) -> torch.Tensor:
    """Binary cross-entropy summed over pixels, averaged over the batch."""
    bce = F.binary_cross_entropy(reconstruction, target.view_as(reconstruction), reduction="none")
    return bce.view(bce.size(0), -1).sum(dim=1).mean()


def vae_loss(outputs: Dict[str, torch.Tensor], target: torch.Tensor, beta: float = 1.0) -> Dict[str, torch.Tensor]:
    recon = reconstruction_loss(outputs["reconstruction"], target)
    kl = kl_divergence(outputs["mean"], outputs["log_var"])
    return {"loss": recon + beta * kl, "reconstruction": recon, "kl": kl}
