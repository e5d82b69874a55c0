"""Data loading, preprocessing and torch datasets."""
