"""Observers get notified after every contrastive divergence call on an RBM.

This keeps the numerical code free of any logging or storage concerns. Anything that wants to watch training (write
TensorBoard summaries, store snapshots, collect curves) implements step_done and is passed to the model.
"""
from __future__ import annotations

import time
from collections import defaultdict
from typing import TYPE_CHECKING, Protocol

from torch.utils.tensorboard import SummaryWriter

from .divergence import CDResult
from ..errors import InvalidParameterError

if TYPE_CHECKING:
    from .model import RBM
    from ..storage import SQLiteStatsStorage


class TrainingObserver(Protocol):
    def step_done(self,
                  model: RBM,
                  result: CDResult):
        ...


def gradient_norms(result: CDResult) -> dict[str, float]:
    """Euclidean norms of each gradient component."""
    return {f"grad_norm_{name}": gradient.norm().item() for name, gradient in result.gradients._asdict().items()}


class HistoryObserver:
    def __init__(self,
                 track_cross_entropy: bool = True):
        """Collects per-step metrics in memory.

        Parameters:
            track_cross_entropy: If True, compute the reconstruction cross-entropy on the model's stored input after
                                 each step. This costs one extra forward pass.
        """
        self.track_cross_entropy = track_cross_entropy
        self.history = defaultdict(list)
        self.n_steps = 0

    def step_done(self,
                  model: RBM,
                  result: CDResult):
        self.n_steps += 1
        for key, value in gradient_norms(result).items():
            self.history[key].append(value)
        if self.track_cross_entropy:
            self.history["cross_entropy"].append(model.reconstruction_cross_entropy().item())


class TensorBoardObserver:
    def __init__(self,
                 writer: SummaryWriter,
                 prefix: str = "rbm"):
        """Writes scalars for each training step to TensorBoard.

        Parameters:
            writer: Where to write to. Flushing/closing is up to the owner of the writer.
            prefix: Tags will look like prefix/cross_entropy.
        """
        self.writer = writer
        self.prefix = prefix
        self.global_step = 0

    def step_done(self,
                  model: RBM,
                  result: CDResult):
        self.writer.add_scalar(f"{self.prefix}/cross_entropy", model.reconstruction_cross_entropy().item(),
                               self.global_step)
        for key, value in gradient_norms(result).items():
            self.writer.add_scalar(f"{self.prefix}/{key}", value, self.global_step)
        self.global_step += 1


class StorageObserver:
    def __init__(self,
                 storage: SQLiteStatsStorage,
                 session_id: str,
                 worker_id: str,
                 type_id: str = "rbm",
                 frequency: int = 1):
        """Stores parameter snapshots as updates in a stats storage.

        Parameters:
            storage: Storage to put updates into.
            session_id, worker_id, type_id: Keys under which updates are stored.
            frequency: Store a snapshot after every this many steps.
        """
        if frequency < 1:
            raise InvalidParameterError(f"frequency must be at least 1, got {frequency}")
        self.storage = storage
        self.session_id = session_id
        self.worker_id = worker_id
        self.type_id = type_id
        self.frequency = frequency
        self.n_steps = 0
        self.last_timestamp = -1

    def step_done(self,
                  model: RBM,
                  result: CDResult):
        self.n_steps += 1
        if self.n_steps % self.frequency:
            return
        # updates are keyed by timestamp, so two snapshots within the same millisecond must not collide
        timestamp = max(int(time.time() * 1000), self.last_timestamp + 1)
        self.last_timestamp = timestamp
        snapshot = {"step": self.n_steps,
                    "weights": result.parameters.weights.detach().cpu().clone(),
                    "hidden_bias": result.parameters.hidden_bias.detach().cpu().clone(),
                    "visible_bias": result.parameters.visible_bias.detach().cpu().clone()}
        snapshot.update(gradient_norms(result))
        self.storage.put_update(self.session_id, self.type_id, self.worker_id, timestamp, snapshot)
