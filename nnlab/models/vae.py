from typing import Dict, Optional, Sequence, Tuple

import torch
import torch.nn as nn
from nnlab.models.base import BaseModel


def _dense_stack(in_dim: int, hidden: Sequence[int]) -> Tuple[nn.Sequential, int]:
    layers = []
    prev = in_dim
    for h in hidden:
        layers.append(nn.Linear(prev, h))
        layers.append(nn.ReLU())
        prev = h
    return nn.Sequential(*layers), prev


def reparameterize(mean: torch.Tensor,
                   log_var: torch.Tensor,
                   generator: Optional[torch.Generator] = None) -> torch.Tensor:
    """z = mean + eps * std with eps ~ N(0, I); keeps the sample differentiable in mean/log_var."""
    std = torch.exp(0.5 * log_var)
    eps = torch.randn(mean.shape, generator=generator, device=mean.device, dtype=mean.dtype)
    return mean + eps * std


class Encoder(nn.Module):
    def __init__(self,
                 input_dim: int = 784,
                 hidden: Sequence[int] = (256, 128),
                 latent_dim: int = 10,
                 variational: bool = True):
        super().__init__()
        self.latent_dim = int(latent_dim)
        self.variational = bool(variational)
        self.flatten = nn.Flatten()
        self.body, out = _dense_stack(input_dim, hidden)
        n_out = 2 * self.latent_dim if self.variational else self.latent_dim
        self.head = nn.Linear(out, n_out)

    def forward(self, x: torch.Tensor):
        """
        x: (batch, 1, H, W) or (batch, H*W)
        returns: latent (batch, latent_dim), or (mean, log_var) when variational
        """
        h = self.head(self.body(self.flatten(x)))
        if not self.variational:
            return h
        h = h.view(-1, 2, self.latent_dim)
        return h[:, 0, :], h[:, 1, :]


class Decoder(nn.Module):
    def __init__(self,
                 latent_dim: int = 10,
                 hidden: Sequence[int] = (128, 256),
                 output_shape: Tuple[int, int, int] = (1, 28, 28)):
        super().__init__()
        self.output_shape = tuple(output_shape)
        n_pixels = 1
        for d in self.output_shape:
            n_pixels *= d
        self.body, out = _dense_stack(latent_dim, hidden)
        self.head = nn.Sequential(nn.Linear(out, n_pixels), nn.Sigmoid())

    def forward(self, z: torch.Tensor) -> torch.Tensor:
        out = self.head(self.body(z))
        return out.view(-1, *self.output_shape)


def _as_batch(image: torch.Tensor) -> torch.Tensor:
    # (H, W) -> (1, 1, H, W); (1, H, W) -> (1, 1, H, W)
    if image.dim() == 2:
        return image.unsqueeze(0).unsqueeze(0)
    if image.dim() == 3:
        return image.unsqueeze(0)
    return image


class Autoencoder(BaseModel):
    """Plain (deterministic) autoencoder; trained on reconstruction error only."""

    def __init__(self,
                 latent_dim: int = 10,
                 image_shape: Tuple[int, int, int] = (1, 28, 28),
                 encoder_hidden: Sequence[int] = (256, 128),
                 decoder_hidden: Sequence[int] = (128, 256)):
        super().__init__()
        self.latent_dim = int(latent_dim)
        self.image_shape = tuple(image_shape)
        input_dim = self.image_shape[0] * self.image_shape[1] * self.image_shape[2]
        self.encoder = Encoder(input_dim, encoder_hidden, latent_dim, variational=False)
        self.decoder = Decoder(latent_dim, decoder_hidden, self.image_shape)

    def encode(self, x: torch.Tensor) -> torch.Tensor:
        return self.encoder(x)

    def decode(self, z: torch.Tensor) -> torch.Tensor:
        return self.decoder(z)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.decode(self.encode(x))

    @torch.no_grad()
    def interpolate(self, a: torch.Tensor, b: torch.Tensor, steps: int = 10) -> torch.Tensor:
        za = self.encode(_as_batch(a).to(self.device))
        zb = self.encode(_as_batch(b).to(self.device))
        return self.decode(_blend(za, zb, steps))


def _blend(za: torch.Tensor, zb: torch.Tensor, steps: int) -> torch.Tensor:
    if steps < 2:
        raise ValueError(f"steps must be >= 2 to include both endpoints, got {steps}")
    t = torch.linspace(0.0, 1.0, steps, device=za.device, dtype=za.dtype).unsqueeze(1)
    return (1.0 - t) * za + t * zb   # (steps, latent_dim)


class VariationalAutoencoder(BaseModel):
    """
    Dense VAE for 28x28 grayscale images.

    The encoder emits a mean and a log-variance per latent dimension; the latent
    sample is drawn with the reparameterization trick and decoded through a
    sigmoid so reconstructions live in [0, 1].
    """

    def __init__(self,
                 latent_dim: int = 10,
                 image_shape: Tuple[int, int, int] = (1, 28, 28),
                 encoder_hidden: Sequence[int] = (256, 128),
                 decoder_hidden: Sequence[int] = (128, 256)):
        super().__init__()
        self.latent_dim = int(latent_dim)
        self.image_shape = tuple(image_shape)
        input_dim = self.image_shape[0] * self.image_shape[1] * self.image_shape[2]
        self.encoder = Encoder(input_dim, encoder_hidden, latent_dim, variational=True)
        self.decoder = Decoder(latent_dim, decoder_hidden, self.image_shape)

    def encode(self, x: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
        return self.encoder(x)

    def decode(self, z: torch.Tensor) -> torch.Tensor:
        return self.decoder(z)

    def forward(self, x: torch.Tensor) -> Dict[str, torch.Tensor]:
        mean, log_var = self.encode(x)
        z = reparameterize(mean, log_var)
        return {"reconstruction": self.decode(z), "mean": mean, "log_var": log_var, "z": z}

    @torch.no_grad()
    def sample(self, n: int = 16, generator: Optional[torch.Generator] = None) -> torch.Tensor:
        """Decode `n` latent vectors drawn from the N(0, I) prior."""
        z = torch.randn((n, self.latent_dim), generator=generator).to(self.device)
        return self.decode(z)

    @torch.no_grad()
    def interpolate(self, a: torch.Tensor, b: torch.Tensor, steps: int = 10) -> torch.Tensor:
        """Decode `steps` evenly spaced blends between the latent means of images a and b."""
        mean_a, _ = self.encode(_as_batch(a).to(self.device))
        mean_b, _ = self.encode(_as_batch(b).to(self.device))
        return self.decode(_blend(mean_a, mean_b, steps))
