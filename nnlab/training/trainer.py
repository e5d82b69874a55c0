from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Optional
import copy
import logging
import os
import random
import signal
import threading
import time
import numpy as np
import torch
from torch.utils.data import DataLoader
from tqdm import tqdm

from nnlab.training.losses import (
    batch_class_weights,
    class_weights,
    vae_loss,
    weighted_binary_cross_entropy,
)

logger = logging.getLogger(__name__)

ITERATION_COMPLETED = "iteration_completed"
EPOCH_COMPLETED = "epoch_completed"


def set_seed(seed: int = 0):
    """Set random seeds for reproducibility"""
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)


class EarlyStopping:
    """
    early stopping utility:
    - monitors a loss (validation loss when available)
    - if no improvement after `patience` epochs, stop.
    """
    def __init__(self, patience: int = 8, min_delta: float = 1e-6):
        self.patience = int(patience)
        self.min_delta = float(min_delta)
        self.best_loss = float("inf")
        self.counter = 0
        self.best_state = None

    def step(self, current_loss: float, model: torch.nn.Module):
        improved = current_loss + self.min_delta < self.best_loss
        if improved:
            self.best_loss = current_loss
            self.counter = 0
            # store a copy of best state_dict
            self.best_state = copy.deepcopy(model.state_dict())
            return True
        else:
            self.counter += 1
            return False

    def should_stop(self) -> bool:
        return self.counter >= self.patience

    def best_weights(self):
        return self.best_state


class StopControl:
    """
    Manual stop switch for a running loop.

    Pass it in `handlers`; once `request_stop()` has been called (from another
    thread, a signal handler or a test) the loop halts after the current iteration.
    """

    def __init__(self):
        self._event = threading.Event()
        self._previous_handler = None

    def request_stop(self):
        self._event.set()

    def reset(self):
        self._event.clear()

    @property
    def stopped(self) -> bool:
        return self._event.is_set()

    def __call__(self, event: str, state: "LoopState") -> bool:
        return not self.stopped

    def install_signal_handler(self, signum: int = signal.SIGINT):
        """First Ctrl-C requests a graceful stop; the previous handler is restored afterwards."""
        def _handler(sig, frame):
            logger.warning("Stop requested; finishing current iteration.")
            self.request_stop()
            signal.signal(signum, self._previous_handler or signal.default_int_handler)

        self._previous_handler = signal.signal(signum, _handler)
        return self._previous_handler

    def restore_signal_handler(self, signum: int = signal.SIGINT):
        if self._previous_handler is not None:
            signal.signal(signum, self._previous_handler)
            self._previous_handler = None


@dataclass
class LoopState:
    model: torch.nn.Module
    epoch: int = 0
    iteration: int = 0
    batch_metrics: Dict[str, float] = field(default_factory=dict)
    epoch_metrics: Dict[str, float] = field(default_factory=dict)


# step_fn(model, batch, device) -> dict of scalar tensors, must contain "loss"
StepFn = Callable[[torch.nn.Module, tuple, torch.device], Dict[str, torch.Tensor]]
Handler = Callable[[str, LoopState], Optional[bool]]


def _make_dataloader(dataset, batch_size: int = 64, shuffle: bool = True, num_workers: int = 0):
    """Small wrapper for DataLoader to keep calls compact and readable."""
    return DataLoader(dataset, batch_size=batch_size, shuffle=shuffle, num_workers=num_workers)


def _fire(handlers: Iterable[Handler], event: str, state: LoopState) -> bool:
    """Run every handler; False from any of them means halt."""
    keep_going = True
    for h in handlers:
        if h(event, state) is False:
            keep_going = False
    return keep_going


def _build_scheduler(optimizer, scheduler_cfg: Optional[Dict]):
    if not scheduler_cfg:
        return None
    name = str(scheduler_cfg.get("name", "")).lower()
    params = scheduler_cfg.get("params", {}) or {}
    if name == "steplr":
        return torch.optim.lr_scheduler.StepLR(optimizer, **params)
    if name == "reducelronplateau":
        return torch.optim.lr_scheduler.ReduceLROnPlateau(optimizer, **params)
    raise ValueError(f"Unknown scheduler: {scheduler_cfg.get('name')}")


def _run_validation(model, val_loader, step_fn: StepFn, device) -> Dict[str, float]:
    model.eval()
    sums: Dict[str, float] = {}
    n_batches = 0
    with torch.no_grad():
        for batch in val_loader:
            out = step_fn(model, batch, device)
            for k, v in out.items():
                sums[k] = sums.get(k, 0.0) + float(v.item())
            n_batches += 1
    return {k: v / n_batches for k, v in sums.items()} if n_batches else {"loss": float("nan")}


def train_loop(model: torch.nn.Module,
               train_dataset,
               step_fn: StepFn,
               cfg: Dict,
               val_dataset=None,
               handlers: Iterable[Handler] = (),
               device: Optional[str] = None,
               save_path: Optional[str] = None,
               seed: int = 0) -> Dict:
    """
    Generic epoch loop around `step_fn`.

    cfg keys used:
      - batch_size
      - epochs
      - lr
      - weight_decay (optional)
      - early_stop_patience (optional, 0/None disables)
      - num_workers (optional)
      - scheduler (optional): dict with keys name (e.g., 'StepLR') and params

    Returns history: per-epoch lists keyed by metric name ("train_loss", "val_loss",
    "train_<metric>" for extra step outputs), plus "epochs_run", "halted" (a handler or
    StopControl ended the run) and "stopped_early" (halted, or early-stopping patience ran out).
    """
    set_seed(seed)
    handlers = list(handlers)

    if device is None:
        device = "cuda" if torch.cuda.is_available() else "cpu"
    device = torch.device(device)

    batch_size = int(cfg.get("batch_size", 64))
    num_workers = int(cfg.get("num_workers", 0))
    train_loader = _make_dataloader(train_dataset, batch_size=batch_size, shuffle=True, num_workers=num_workers)
    val_loader = None
    if val_dataset is not None:
        val_loader = _make_dataloader(val_dataset, batch_size=batch_size, shuffle=False, num_workers=num_workers)

    lr = float(cfg.get("lr", 1e-3))
    weight_decay = float(cfg.get("weight_decay", 0.0))
    optimizer = torch.optim.Adam(model.parameters(), lr=lr, weight_decay=weight_decay)
    scheduler = _build_scheduler(optimizer, cfg.get("scheduler"))

    patience = cfg.get("early_stop_patience")
    early_stopper = EarlyStopping(patience=int(patience), min_delta=cfg.get("min_delta", 1e-6)) if patience else None

    model.to(device)
    history: Dict = {"train_loss": []}
    if val_loader is not None:
        history["val_loss"] = []
    state = LoopState(model=model)
    halted = False
    patience_exhausted = False

    epochs = int(cfg.get("epochs", 10))
    if save_path:
        save_path = os.path.abspath(save_path)
        os.makedirs(os.path.dirname(save_path), exist_ok=True)

    for epoch in range(1, epochs + 1):
        state.epoch = epoch
        model.train()
        sums: Dict[str, float] = {}
        n_batches = 0
        t0 = time.time()
        loop = tqdm(train_loader, desc=f"Epoch {epoch}/{epochs} - train", leave=False)
        for batch in loop:
            optimizer.zero_grad()
            out = step_fn(model, batch, device)
            loss = out["loss"]
            loss.backward()
            optimizer.step()

            state.iteration += 1
            state.batch_metrics = {k: float(v.item()) for k, v in out.items()}
            for k, v in state.batch_metrics.items():
                sums[k] = sums.get(k, 0.0) + v
            n_batches += 1
            loop.set_postfix({'batch_loss': state.batch_metrics["loss"]})

            if not _fire(handlers, ITERATION_COMPLETED, state):
                halted = True
                break
        loop.close()

        epoch_metrics = {f"train_{k}": v / n_batches for k, v in sums.items()} if n_batches else {"train_loss": float("nan")}
        for k, v in epoch_metrics.items():
            history.setdefault(k, []).append(v)

        monitored = epoch_metrics["train_loss"]
        msg = f"Epoch {epoch:03d} train_loss={monitored:.6f}"
        if val_loader is not None:
            val_metrics = _run_validation(model, val_loader, step_fn, device)
            for k, v in val_metrics.items():
                history.setdefault(f"val_{k}", []).append(v)
                epoch_metrics[f"val_{k}"] = v
            monitored = val_metrics["loss"]
            msg += f" val_loss={monitored:.6f}"
        tqdm.write(f"{msg} time={time.time() - t0:.1f}s")

        state.epoch_metrics = epoch_metrics
        if not _fire(handlers, EPOCH_COMPLETED, state):
            halted = True

        if scheduler is not None:
            # ReduceLROnPlateau needs the monitored loss
            if isinstance(scheduler, torch.optim.lr_scheduler.ReduceLROnPlateau):
                scheduler.step(monitored)
            else:
                scheduler.step()

        if early_stopper is not None:
            if early_stopper.step(monitored, model) and save_path:
                torch.save(early_stopper.best_weights(), save_path)
            if early_stopper.should_stop():
                logger.info(f"Early stopping at epoch {epoch}. Best loss={early_stopper.best_loss:.6f}")
                patience_exhausted = True
                break
        elif save_path:
            torch.save(model.state_dict(), save_path)

        if halted:
            logger.info(f"Training halted by handler at epoch {epoch}, iteration {state.iteration}")
            break

    if early_stopper is not None and early_stopper.best_weights() is not None:
        model.load_state_dict(early_stopper.best_weights())

    history["halted"] = halted
    history["stopped_early"] = halted or patience_exhausted
    history["epochs_run"] = state.epoch
    return history


def _classifier_step(negative_weight, positive_weight, per_batch: bool) -> StepFn:
    def step(model, batch, device):
        x, y = batch
        x = x.to(device)
        y = y.to(device)
        pred = model(x)
        if per_batch:
            neg, pos = batch_class_weights(y)
        else:
            neg, pos = negative_weight, positive_weight
        loss = weighted_binary_cross_entropy(pred, y, negative_weight=neg, positive_weight=pos)
        return {"loss": loss}
    return step


def train_classifier(model: torch.nn.Module,
                     train_dataset,
                     cfg: Dict,
                     val_dataset=None,
                     handlers: Iterable[Handler] = (),
                     device: Optional[str] = None,
                     save_path: Optional[str] = None,
                     seed: int = 0) -> Dict:
    """
    Train a binary classifier with BCE re-weighted by inverse class frequency.

    cfg["class_weighting"]: "dataset" (default, counts from the whole training set),
    "batch" (counts per batch) or "none".
    """
    mode = str(cfg.get("class_weighting", "dataset")).lower()
    if mode == "dataset":
        neg, pos = class_weights(train_dataset.y)
        logger.info(f"Class weights: negative={neg:.3e} positive={pos:.3e}")
    elif mode in ("batch", "none"):
        neg, pos = 1.0, 1.0
    else:
        raise ValueError(f"Unknown class_weighting: {mode}")
    step = _classifier_step(neg, pos, per_batch=(mode == "batch"))
    return train_loop(model, train_dataset, step, cfg, val_dataset=val_dataset, handlers=handlers,
                      device=device, save_path=save_path, seed=seed)


def _autoencoder_step(model, batch, device):
    x = batch[0].to(device)
    recon = model(x)
    return {"loss": torch.nn.functional.mse_loss(recon, x)}


def train_autoencoder(model: torch.nn.Module,
                      train_dataset,
                      cfg: Dict,
                      val_dataset=None,
                      handlers: Iterable[Handler] = (),
                      device: Optional[str] = None,
                      save_path: Optional[str] = None,
                      seed: int = 0) -> Dict:
    """Train a plain autoencoder on mean squared reconstruction error."""
    return train_loop(model, train_dataset, _autoencoder_step, cfg, val_dataset=val_dataset,
                      handlers=handlers, device=device, save_path=save_path, seed=seed)


def train_vae(model: torch.nn.Module,
              train_dataset,
              cfg: Dict,
              val_dataset=None,
              handlers: Iterable[Handler] = (),
              device: Optional[str] = None,
              save_path: Optional[str] = None,
              seed: int = 0) -> Dict:
    """Train a VAE on reconstruction BCE + beta * KL; history carries both terms per epoch."""
    beta = float(cfg.get("beta", 1.0))

    def step(model, batch, device):
        x = batch[0].to(device)
        return vae_loss(model(x), x, beta=beta)

    return train_loop(model, train_dataset, step, cfg, val_dataset=val_dataset, handlers=handlers,
                      device=device, save_path=save_path, seed=seed)
