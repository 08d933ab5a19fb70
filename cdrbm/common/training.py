from __future__ import annotations

import os
from collections.abc import Iterable

import numpy as np
import torch
from torch import nn

from ..types import ScalarFloat


class ParameterTracker:
    def __init__(self,
                 model: nn.Module):
        """Base class for parameter trackers/storages like early stopping.

        RBMs keep their weights as float buffers rather than nn.Parameters, so we track both.

        Parameters:
            model: Model to track.
        """
        self.model = model
        self.tracked_parameters = [param.detach().clone() for param in self.get_parameters()]

    def get_parameters(self) -> Iterable[torch.Tensor]:
        """Return all floating point parameters and buffers."""
        return iter(param for param in (*self.model.parameters(), *self.model.buffers())
                    if torch.is_floating_point(param))

    @torch.no_grad()
    def apply_parameters(self):
        """Overwrite the model's current state with the tracked one."""
        for tracked_param, model_param in zip(self.tracked_parameters, self.get_parameters()):
            model_param.copy_(tracked_param)


class EarlyStopping(ParameterTracker):
    def __init__(self,
                 model: nn.Module,
                 patience: int | None,
                 min_delta: float = 0.0001,
                 verbose: bool = False,
                 restore_best: bool = False):
        """Stop training once the monitored cross-entropy stops decreasing.

        The parameters with the lowest value seen so far are kept and can be restored at the end.

        Parameters:
            model: Model to track.
            patience: Number of epochs in a row without a decrease that are tolerated. None disables stopping.
            min_delta: A decrease smaller than this does not count.
            verbose: If True, print when the best value changes or stopping triggers.
            restore_best: If True, the best parameters are copied back into the model when stopping triggers.
        """
        super().__init__(model)
        self.best_value = np.inf
        self.min_delta = min_delta
        self.patience = patience
        self.epochs_without_improvement = 0
        self.verbose = verbose
        self.restore_best = restore_best

    def update(self,
               value: ScalarFloat | float) -> bool:
        """Record one epoch's value. Returns True if training should stop. A nan value never counts as a decrease."""
        if self.patience is None:
            return False

        if value < self.best_value - self.min_delta:
            self.best_value = value
            self.update_best()
            self.epochs_without_improvement = 0
            if self.verbose:
                print(f"New best value {value:.6g}")
            return False

        self.epochs_without_improvement += 1
        if self.epochs_without_improvement <= self.patience:
            return False
        if self.verbose:
            print(f"No decrease for {self.epochs_without_improvement} epochs, stopping"
                  + (" and restoring best parameters" if self.restore_best else ""))
        if self.restore_best:
            self.apply_parameters()
        return True

    @torch.no_grad()
    def update_best(self):
        """Update saved state with new best."""
        for best_param, model_param in zip(self.tracked_parameters, self.get_parameters()):
            best_param.copy_(model_param)


class Checkpointer:
    def __init__(self,
                 model: nn.Module,
                 directory: str,
                 checkpoint_name: str,
                 frequency: int):
        """Regularly saves model state (via state_dict) during training.

        Parameters:
            model: Model to store checkpoints for.
            directory: Path to store checkpoints to. Will be created if non-existent.
            checkpoint_name: Base name for each checkpoint file. Epoch indices will be appended.
            frequency: Will create a checkpoint every this many epochs.
        """
        self.model = model
        self.directory = directory
        self.checkpoint_name = checkpoint_name
        self.frequency = frequency
        os.makedirs(directory, exist_ok=True)

    def maybe_checkpoint(self,
                         epoch_ind: int) -> str | None:
        """Create a new checkpoint if the trigger has been met. Returns the path if a checkpoint was written."""
        if epoch_ind % self.frequency:
            return None
        path = os.path.join(self.directory, self.checkpoint_name + f"_{epoch_ind:04}.pt")
        torch.save(self.model.state_dict(), path)
        return path

    def save_final(self) -> str:
        path = os.path.join(self.directory, self.checkpoint_name + "_final.pt")
        torch.save(self.model.state_dict(), path)
        return path
