import os
import signal

import numpy as np
import pytest
import torch

from nnlab.data.dataset import ImageDataset, TransactionDataset
from nnlab.models import Autoencoder, FraudClassifier, VariationalAutoencoder
from nnlab.training.trainer import (
    EPOCH_COMPLETED,
    ITERATION_COMPLETED,
    EarlyStopping,
    StopControl,
    train_autoencoder,
    train_classifier,
    train_vae,
)


@pytest.fixture
def separable_dataset():
    rng = np.random.default_rng(0)
    x = rng.normal(size=(256, 4)).astype(np.float32)
    y = (x[:, 0] > 1.0).astype(np.float32)
    return TransactionDataset(x, y)


def test_train_classifier_records_history(separable_dataset):
    model = FraudClassifier(n_features=4, hidden=16)
    cfg = {"batch_size": 64, "epochs": 3, "lr": 1e-2}
    history = train_classifier(model, separable_dataset, cfg, val_dataset=separable_dataset, device="cpu")
    assert len(history["train_loss"]) == 3
    assert len(history["val_loss"]) == 3
    assert history["epochs_run"] == 3
    assert history["stopped_early"] is False
    assert history["halted"] is False
    assert all(np.isfinite(history["train_loss"]))


@pytest.mark.parametrize("mode", ["batch", "none"])
def test_train_classifier_weighting_modes(separable_dataset, mode):
    model = FraudClassifier(n_features=4, hidden=8)
    history = train_classifier(model, separable_dataset, {"batch_size": 32, "epochs": 1, "class_weighting": mode},
                               device="cpu")
    assert np.isfinite(history["train_loss"][0])


def test_train_classifier_rejects_unknown_weighting(separable_dataset):
    with pytest.raises(ValueError):
        train_classifier(FraudClassifier(n_features=4), separable_dataset, {"class_weighting": "median"})


def test_stop_control_halts_after_current_iteration(separable_dataset):
    stop = StopControl()
    seen = []

    def count(event, state):
        if event == ITERATION_COMPLETED:
            seen.append(state.iteration)
            if state.iteration == 2:
                stop.request_stop()

    model = FraudClassifier(n_features=4, hidden=8)
    history = train_classifier(model, separable_dataset, {"batch_size": 16, "epochs": 5},
                               handlers=[count, stop], device="cpu")
    assert seen == [1, 2]
    assert history["stopped_early"] is True
    assert history["epochs_run"] == 1
    assert len(history["train_loss"]) == 1


def test_sigint_requests_graceful_stop_and_handler_is_restored(separable_dataset):
    original = signal.getsignal(signal.SIGINT)
    stop = StopControl()
    assert stop.install_signal_handler() is original
    seen = []

    def interrupt(event, state):
        if event == ITERATION_COMPLETED:
            seen.append(state.iteration)
            if state.iteration == 2:
                os.kill(os.getpid(), signal.SIGINT)

    try:
        history = train_classifier(FraudClassifier(n_features=4, hidden=8), separable_dataset,
                                   {"batch_size": 16, "epochs": 5}, handlers=[interrupt, stop], device="cpu")
    finally:
        stop.restore_signal_handler()

    assert stop.stopped
    assert seen == [1, 2]
    assert history["halted"] is True
    assert history["stopped_early"] is True
    assert history["epochs_run"] == 1
    assert signal.getsignal(signal.SIGINT) is original


def test_patience_exhaustion_marks_stopped_early(separable_dataset):
    # min_delta this large means only the first epoch counts as an improvement
    cfg = {"batch_size": 64, "epochs": 6, "early_stop_patience": 1, "min_delta": 1e9}
    history = train_classifier(FraudClassifier(n_features=4, hidden=8), separable_dataset, cfg, device="cpu")
    assert history["epochs_run"] == 2
    assert len(history["train_loss"]) == 2
    assert history["stopped_early"] is True
    assert history["halted"] is False


def test_handler_returning_false_stops_at_epoch_end(separable_dataset):
    def one_epoch(event, state):
        return not (event == EPOCH_COMPLETED and state.epoch == 1)

    history = train_classifier(FraudClassifier(n_features=4, hidden=8), separable_dataset,
                               {"batch_size": 64, "epochs": 4}, handlers=[one_epoch], device="cpu")
    assert history["epochs_run"] == 1
    assert history["stopped_early"] is True


def test_stop_control_reset():
    stop = StopControl()
    stop.request_stop()
    assert stop.stopped and stop("x", None) is False
    stop.reset()
    assert not stop.stopped and stop("x", None) is True


def test_early_stopping_tracks_best_state():
    model = torch.nn.Linear(2, 1)
    es = EarlyStopping(patience=2)
    assert es.step(1.0, model) is True
    assert es.step(1.5, model) is False
    assert not es.should_stop()
    assert es.step(1.2, model) is False
    assert es.should_stop()
    assert es.best_loss == 1.0
    assert set(es.best_weights()) == {"weight", "bias"}


def test_checkpoint_written_with_early_stopping(tmp_path, separable_dataset):
    path = tmp_path / "ckpt" / "best.pth"
    cfg = {"batch_size": 64, "epochs": 2, "early_stop_patience": 3}
    train_classifier(FraudClassifier(n_features=4, hidden=8), separable_dataset, cfg,
                     device="cpu", save_path=str(path))
    assert path.exists()


def test_scheduler_config(separable_dataset):
    cfg = {"batch_size": 64, "epochs": 2, "scheduler": {"name": "StepLR", "params": {"step_size": 1}}}
    history = train_classifier(FraudClassifier(n_features=4, hidden=8), separable_dataset, cfg, device="cpu")
    assert len(history["train_loss"]) == 2
    with pytest.raises(ValueError):
        train_classifier(FraudClassifier(n_features=4, hidden=8), separable_dataset,
                         {"epochs": 1, "scheduler": {"name": "Cosine"}}, device="cpu")


def test_train_vae_tracks_loss_terms(images):
    ds = ImageDataset(images)
    history = train_vae(VariationalAutoencoder(latent_dim=2), ds, {"batch_size": 8, "epochs": 2}, device="cpu")
    for key in ("train_loss", "train_reconstruction", "train_kl"):
        assert len(history[key]) == 2
    assert all(kl >= 0 for kl in history["train_kl"])


def test_train_autoencoder_reduces_loss():
    ds = ImageDataset(np.full((16, 28, 28), 200, dtype=np.uint8))
    history = train_autoencoder(Autoencoder(latent_dim=4), ds, {"batch_size": 8, "epochs": 5, "lr": 1e-3},
                                device="cpu")
    assert history["train_loss"][-1] < history["train_loss"][0]
