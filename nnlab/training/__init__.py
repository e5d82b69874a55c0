# nnlab/training/__init__.py
"""
Training package.

Contains:
- losses.py    : class-weighted BCE, KL divergence, VAE loss
- trainer.py   : generic PyTorch training loop (handlers, stop control, early stopping, checkpointing)
- evaluator.py : confusion-matrix metrics, reconstruction metrics, plotting utilities
"""
__all__ = ["losses", "trainer", "evaluator"]
