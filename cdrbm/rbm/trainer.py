from __future__ import annotations

from collections import defaultdict
from time import perf_counter
from typing import TYPE_CHECKING

import numpy as np
import torch
from torch.utils.data import DataLoader, Dataset
from torch.utils.tensorboard import SummaryWriter
from tqdm.auto import tqdm

from .model import RBM
from ..common import Checkpointer, EarlyStopping
from ..errors import InvalidParameterError
from ..types import ScalarFloat, VisibleBatch

if TYPE_CHECKING:
    from ..config import TrainingConfig


class RBMTrainer:
    def __init__(self,
                 model: RBM,
                 training_loader: DataLoader,
                 validation_loader: DataLoader | None,
                 n_epochs: int,
                 learning_rate: float,
                 k: int = 1,
                 device: str = "cpu",
                 early_stopper: EarlyStopping | None = None,
                 checkpointer: Checkpointer | None = None,
                 verbose: bool = True,
                 use_tqdm: bool = False,
                 tensorboard_logdir: str | None = None):
        """Epoch-based training loop for RBMs using contrastive divergence.

        There is no optimizer here: every batch triggers exactly one CD-k update on the model, which changes the
        parameters in place.

        Parameters:
            model: The model to train.
            training_loader, validation_loader: Dataloaders for training/validation sets. Batches may be tensors or
                                                tuples of (inputs, labels); labels are ignored. Inputs are flattened
                                                to batch x n_visible and converted to the model's dtype. Pass None for
                                                validation_loader to skip validation; early stopping then uses the
                                                training cross-entropy.
            n_epochs: Number of full iterations over the training loader.
            learning_rate: Step size of each CD update.
            k: Number of Gibbs steps per update.
            device: Device on which all the torch stuff should happen. The model is moved there. Its generator must
                    already live on a device of the same type, since generators cannot be moved.
            early_stopper: Optional early stopping object tracking the cross-entropy. Pass None to disable.
            checkpointer: If given, checkpoints will be stored at the desired frequency, plus one with _final suffix at
                          the end of training.
            verbose: If True, report on training progress throughout.
            use_tqdm: If True, and verbose is also True, supply per-epoch progress bars.
            tensorboard_logdir: If given, will log per-epoch metrics to the specified directory for visualization
                                with TensorBoard. Per-step logging is available via TensorBoardObserver.
        """
        if n_epochs < 1:
            raise InvalidParameterError(f"n_epochs must be at least 1, got {n_epochs}")
        if not learning_rate > 0:
            raise InvalidParameterError(f"learning_rate must be positive, got {learning_rate}")
        if k < 1:
            raise InvalidParameterError(f"k must be at least 1, got {k}")
        if validation_loader is not None and len(validation_loader) == 0:
            raise InvalidParameterError("validation_loader is empty; pass None to skip validation")
        if model.generator.device.type != torch.device(device).type:
            raise InvalidParameterError(f"The model's generator is on {model.generator.device}, but training should "
                                        f"happen on {device}")
        model.to(device)
        self.model = model
        self.training_loader = training_loader
        self.validation_loader = validation_loader
        self.n_epochs = n_epochs
        self.learning_rate = learning_rate
        self.k = k
        self.device = device
        self.early_stopper = early_stopper
        self.checkpointer = checkpointer
        self.verbose = verbose
        self.use_tqdm = use_tqdm

        if tensorboard_logdir is not None:
            self.writer = SummaryWriter(tensorboard_logdir)
        else:
            self.writer = None

    @classmethod
    def from_config(cls,
                    model: RBM,
                    config: TrainingConfig,
                    training_data: Dataset,
                    validation_data: Dataset | None = None,
                    checkpointer: Checkpointer | None = None) -> RBMTrainer:
        """Create a trainer from a TrainingConfig. Early stopping restores the best parameters when triggered.

        Parameters:
            model: The model to train.
            config: Hyperparameters. batch_size determines the batch size of both dataloaders.
            training_data: Dataset to train on. It is shuffled every epoch, seeded from the model's generator.
            validation_data: Optional dataset for validation. Not shuffled.
            checkpointer: See __init__.
        """
        config.validate()
        shuffle_generator = torch.Generator().manual_seed(model.generator.initial_seed())
        training_loader = DataLoader(training_data, batch_size=config.batch_size, shuffle=True,
                                     generator=shuffle_generator)
        validation_loader = None
        if validation_data is not None:
            validation_loader = DataLoader(validation_data, batch_size=config.batch_size, shuffle=False)
        early_stopper = None
        if config.early_stopping_patience is not None:
            early_stopper = EarlyStopping(model, config.early_stopping_patience, verbose=config.verbose,
                                          restore_best=True)
        return cls(model, training_loader, validation_loader,
                   n_epochs=config.n_epochs,
                   learning_rate=config.learning_rate,
                   k=config.k,
                   device=config.device,
                   early_stopper=early_stopper,
                   checkpointer=checkpointer,
                   verbose=config.verbose,
                   use_tqdm=config.use_tqdm,
                   tensorboard_logdir=config.tensorboard_logdir)

    def train_model(self) -> dict[str, np.ndarray]:
        """The main training & evaluation loop + housekeeping.

        Returns:
            Dictionary mapping metric names to numpy arrays of per-epoch results. Training metrics are averaged over
            the epoch, so they lag a little behind the model's actual state at the end of the epoch.
        """
        if self.verbose:
            print(f"Running {self.n_epochs} epochs at {len(self.training_loader)} steps per epoch.")

        full_metrics = defaultdict(list)
        for epoch_ind in tqdm(iterable=range(self.n_epochs), desc="Overall progress", leave=True,
                              disable=not self.use_tqdm or not self.verbose):
            epoch_train_metrics = self.train_epoch(epoch_ind)
            should_stop = self.finish_epoch(full_metrics, epoch_train_metrics, epoch_ind)
            if should_stop:
                if self.verbose:
                    print("Early stopping...")
                break

        if self.checkpointer is not None:
            self.checkpointer.save_final()
        if self.writer is not None:
            self.writer.close()
        return {key: np.array(values) for key, values in full_metrics.items()}

    def train_epoch(self,
                    epoch_ind: int) -> defaultdict[str, list[float]]:
        """One epoch training loop. Iterates over the training dataloader once and collects metrics.

        Returns:
            Dictionary mapping metric names to lists of per-batch results.
        """
        if self.verbose:
            print(f"Starting epoch {epoch_ind + 1}...", end=" ")
        start_time = perf_counter()
        epoch_train_metrics = defaultdict(list)

        with tqdm(total=len(self.training_loader), desc="Training", leave=False,
                  disable=not self.use_tqdm or not self.verbose) as progressbar:
            for data_batch in self.training_loader:
                batch_metrics = self.train_step(data_batch)
                for key in batch_metrics:
                    epoch_train_metrics[key].append(batch_metrics[key].item())
                progressbar.update(1)

        time_taken = perf_counter() - start_time
        if self.verbose:
            print(f"\tTime taken: {time_taken:.4g} seconds")
        return epoch_train_metrics

    def train_step(self,
                   data_batch: torch.Tensor | tuple[torch.Tensor, ...]) -> dict[str, ScalarFloat]:
        """One CD update on a batch, followed by the cross-entropy on that same batch."""
        inputs = self.prepare_batch(data_batch)
        self.model.contrastive_divergence(self.learning_rate, self.k, inputs)
        return {"cross_entropy": self.model.reconstruction_cross_entropy()}

    def finish_epoch(self,
                     full_run_metrics: dict[str, list[float]],
                     epoch_train_metrics: dict[str, list[float]],
                     epoch_ind: int) -> bool:
        """Bunch of housekeeping after each epoch training loop.

        This function:
            - Evaluates on the validation set (if any).
            - Collects train and validation metrics in one place (full_run_metrics is modified in place).
            - Optionally writes Tensorboard summaries.
            - Checks for early stopping and checkpointing.

        Returns:
            Boolean flag from early stopping.
        """
        for key in epoch_train_metrics:
            full_run_metrics["train_" + key].append(np.mean(epoch_train_metrics[key]))

        if self.validation_loader is not None:
            val_metrics = self.evaluate()
            for key, value in val_metrics.items():
                full_run_metrics["val_" + key].append(value)
            target = val_metrics["cross_entropy"]
        else:
            target = full_run_metrics["train_cross_entropy"][-1]

        if self.writer is not None:
            cross_entropies = {"training": full_run_metrics["train_cross_entropy"][-1]}
            if self.validation_loader is not None:
                cross_entropies["validation"] = full_run_metrics["val_cross_entropy"][-1]
                self.writer.add_scalar("free_energy/validation", full_run_metrics["val_free_energy"][-1], epoch_ind)
            self.writer.add_scalars("cross_entropy", cross_entropies, epoch_ind)
            self.writer.flush()

        if self.verbose:
            print("\tMetrics:")
            for key in full_run_metrics:
                print(f"\t\t{key}: {full_run_metrics[key][-1]:.6g}")
            print()

        should_stop = self.early_stopper.update(target) if self.early_stopper is not None else False
        if self.checkpointer is not None:
            self.checkpointer.maybe_checkpoint(epoch_ind)
        return should_stop

    def evaluate(self) -> dict[str, float]:
        """One evaluation loop. Neither the parameters, the stored inputs nor the generator are touched.

        Returns:
            Mean cross-entropy and mean free energy per example over the validation set.
        """
        n_examples = 0
        cross_entropy_sum = 0.
        free_energy_sum = 0.
        with tqdm(total=len(self.validation_loader), desc="Validation", leave=False,
                  disable=not self.use_tqdm or not self.verbose) as progressbar:
            for data_batch in self.validation_loader:
                inputs = self.prepare_batch(data_batch)
                batch_size = inputs.shape[0]
                # weight by batch size so a smaller last batch does not bias the mean
                cross_entropy_sum += self.model.reconstruction_cross_entropy(inputs).item() * batch_size
                free_energy_sum += self.model.free_energy(inputs).sum().item()
                n_examples += batch_size
                progressbar.update(1)
        return {"cross_entropy": cross_entropy_sum / n_examples, "free_energy": free_energy_sum / n_examples}

    def prepare_batch(self,
                      data_batch: torch.Tensor | tuple[torch.Tensor, ...]) -> VisibleBatch:
        inputs = data_batch[0] if isinstance(data_batch, (tuple, list)) else data_batch
        inputs = inputs.reshape(inputs.shape[0], -1)
        return inputs.to(device=self.device, dtype=self.model.weights.dtype)
