import math

import numpy as np
import pytest
import torch

from nnlab.training.losses import (
    batch_class_weights,
    class_weights,
    kl_divergence,
    reconstruction_loss,
    vae_loss,
    weighted_binary_cross_entropy,
)


def test_class_weights_are_inverse_frequencies():
    neg, pos = class_weights(np.array([0, 0, 0, 1]))
    assert neg == pytest.approx(1 / 3)
    assert pos == pytest.approx(1.0)


def test_class_weights_absent_class_is_zero():
    assert class_weights(torch.zeros(5)) == (pytest.approx(0.2), 0.0)
    assert class_weights(np.ones(4)) == (0.0, pytest.approx(0.25))


def test_batch_class_weights_absent_class():
    neg, pos = batch_class_weights(torch.zeros(4, 1))
    assert neg.item() == pytest.approx(0.25)
    assert pos.item() == 0.0


def test_weighted_bce_matches_unweighted_formula():
    pred = torch.tensor([[0.9], [0.2]])
    target = torch.tensor([[1.0], [0.0]])
    expected = -(math.log(0.9) + math.log(0.8)) / 2
    assert weighted_binary_cross_entropy(pred, target).item() == pytest.approx(expected, rel=1e-5)


def test_weighted_bce_applies_class_weights():
    pred = torch.tensor([[0.9], [0.2]])
    target = torch.tensor([[1.0], [0.0]])
    loss = weighted_binary_cross_entropy(pred, target, negative_weight=0.5, positive_weight=2.0)
    expected = -(2.0 * math.log(0.9) + 0.5 * math.log(0.8)) / 2
    assert loss.item() == pytest.approx(expected, rel=1e-5)


def test_weighted_bce_is_finite_at_saturated_predictions_and_absent_class():
    pred = torch.tensor([[0.0], [1.0]])
    target = torch.zeros(2, 1)
    neg, pos = batch_class_weights(target)
    loss = weighted_binary_cross_entropy(pred, target, negative_weight=neg, positive_weight=pos)
    assert torch.isfinite(loss)


def test_kl_is_zero_at_standard_normal():
    mean = torch.zeros(3, 4)
    log_var = torch.zeros(3, 4)
    assert kl_divergence(mean, log_var).item() == pytest.approx(0.0)


def test_kl_is_positive_away_from_prior():
    mean = torch.ones(2, 3)
    log_var = torch.full((2, 3), 0.5)
    # per dim: -0.5 * (1 + 0.5 - 1 - e^0.5)
    per_dim = -0.5 * (1 + 0.5 - 1 - math.exp(0.5))
    assert kl_divergence(mean, log_var).item() == pytest.approx(3 * per_dim, rel=1e-5)


def test_reconstruction_loss_sums_pixels_and_averages_batch():
    recon = torch.full((2, 1, 2, 2), 0.5)
    target = torch.ones(2, 1, 2, 2)
    assert reconstruction_loss(recon, target).item() == pytest.approx(4 * math.log(2), rel=1e-5)


def test_vae_loss_combines_terms():
    outputs = {
        "reconstruction": torch.full((2, 1, 2, 2), 0.5),
        "mean": torch.ones(2, 3),
        "log_var": torch.zeros(2, 3),
    }
    terms = vae_loss(outputs, torch.ones(2, 1, 2, 2), beta=2.0)
    assert terms["kl"].item() == pytest.approx(1.5)
    assert terms["loss"].item() == pytest.approx(terms["reconstruction"].item() + 3.0, rel=1e-5)
