"""Model package exports."""
from .base import BaseModel
from .classifier import FraudClassifier
from .vae import Autoencoder, Decoder, Encoder, VariationalAutoencoder, reparameterize
