import torch
import torch.nn as nn
from nnlab.models.base import BaseModel


class FraudClassifier(BaseModel):
    """
    Dense binary classifier for card transactions.

    input -> dense(hidden) relu -> dense(hidden) relu -> dropout
          -> dense(hidden) relu -> dropout -> dense(1) sigmoid
    """

    def __init__(self, n_features: int, hidden: int = 256, dropout: float = 0.3):
        super().__init__()
        if n_features <= 0:
            raise ValueError(f"n_features must be positive, got {n_features}")
        self.n_features = int(n_features)
        self.hidden = int(hidden)

        self.net = nn.Sequential(
            nn.Linear(self.n_features, self.hidden),
            nn.ReLU(),
            nn.Linear(self.hidden, self.hidden),
            nn.ReLU(),
            nn.Dropout(dropout),
            nn.Linear(self.hidden, self.hidden),
            nn.ReLU(),
            nn.Dropout(dropout),
            nn.Linear(self.hidden, 1),
            nn.Sigmoid(),
        )

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """
        x: (batch, n_features)
        returns: fraud probability of shape (batch, 1)
        """
        return self.net(x)

    def predict(self, x: torch.Tensor, threshold: float = 0.5) -> torch.Tensor:
        """Hard 0/1 decisions, (batch,) long tensor."""
        was_training = self.training
        self.eval()
        with torch.no_grad():
            probs = self(x).view(-1)
        if was_training:
            self.train()
        return (probs > threshold).long()
