"""
nnlab: two small PyTorch pipelines.

- fraud: dense binary classifier on card transactions, class-weighted BCE,
  confusion-matrix evaluation
- vae: dense (variational) autoencoder on Fashion-MNIST, reconstructions,
  samples and latent interpolations
"""

__version__ = "0.1.0"
