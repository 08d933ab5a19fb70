"""Configuration dataclasses and the builder that turns them into an RBM.

Configs can be created in code or loaded from YAML files with a 'model' and a 'training' section, e.g.

    model:
      n_visible: 784
      n_hidden: 256
      weight_init: uniform
      seed: 0
    training:
      learning_rate: 0.1
      k: 1
      n_epochs: 10
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from pathlib import Path

import torch
import yaml

from .errors import InvalidParameterError
from .rbm.divergence import VISIBLE_BIAS_UPDATES
from .rbm.model import RBM
from .rbm.observers import TrainingObserver
from .rbm.parameters import RBMParameters
from .types import VisibleBatch

logger = logging.getLogger(__name__)


WEIGHT_INITS = ("zero", "uniform")


@dataclass
class RBMConfig:
    """Architecture and update-rule options.

    Parameters:
        n_visible, n_hidden: Layer sizes.
        weight_init: 'zero' for all-zero weights, 'uniform' for small random weights. Biases always start at zero.
        seed: Seed for the model's random generator, which is used for initialization *and* all later sampling. None
              means nondeterministic.
        visible_bias_update: 'overwrite' (visible bias is replaced by learning_rate * gradient on every step) or
                             'accumulate' (added, like weights and hidden bias).
        legacy_cross_entropy: Compute the cross-entropy metric with min(1, input) in place of 1 - input.
    """
    n_visible: int = 784
    n_hidden: int = 256
    weight_init: str = "uniform"
    seed: int | None = None
    visible_bias_update: str = "overwrite"
    legacy_cross_entropy: bool = False

    def validate(self):
        if self.n_visible < 1 or self.n_hidden < 1:
            raise InvalidParameterError(f"Layer sizes must be positive, got n_visible={self.n_visible}, "
                                        f"n_hidden={self.n_hidden}")
        if self.weight_init not in WEIGHT_INITS:
            raise InvalidParameterError(f"Invalid weight_init {self.weight_init}. "
                                        f"Valid are {', '.join(WEIGHT_INITS)}.")
        if self.visible_bias_update not in VISIBLE_BIAS_UPDATES:
            raise InvalidParameterError(f"Invalid visible_bias_update {self.visible_bias_update}. "
                                        f"Valid are {', '.join(VISIBLE_BIAS_UPDATES)}.")


@dataclass
class TrainingConfig:
    """Options for RBMTrainer.

    Parameters:
        learning_rate: Step size for each CD update.
        k: Gibbs steps per update.
        n_epochs: Passes over the training data.
        batch_size: Examples per CD update.
        device: Where tensors live.
        verbose, use_tqdm: Progress reporting.
        tensorboard_logdir: If given, per-epoch metrics are written there.
        early_stopping_patience: None disables early stopping.
    """
    learning_rate: float = 0.1
    k: int = 1
    n_epochs: int = 10
    batch_size: int = 20
    device: str = "cpu"
    verbose: bool = True
    use_tqdm: bool = False
    tensorboard_logdir: str | None = None
    early_stopping_patience: int | None = None

    def validate(self):
        if not self.learning_rate > 0:
            raise InvalidParameterError(f"learning_rate must be positive, got {self.learning_rate}")
        if self.k < 1:
            raise InvalidParameterError(f"k must be at least 1, got {self.k}")
        if self.n_epochs < 1:
            raise InvalidParameterError(f"n_epochs must be at least 1, got {self.n_epochs}")
        if self.batch_size < 1:
            raise InvalidParameterError(f"batch_size must be at least 1, got {self.batch_size}")
        if self.early_stopping_patience is not None and self.early_stopping_patience < 0:
            raise InvalidParameterError(f"early_stopping_patience must be >= 0, got {self.early_stopping_patience}")


@dataclass
class ExperimentConfig:
    model: RBMConfig = field(default_factory=RBMConfig)
    training: TrainingConfig = field(default_factory=TrainingConfig)

    def validate(self):
        self.model.validate()
        self.training.validate()

    @classmethod
    def from_dict(cls,
                  raw: dict) -> ExperimentConfig:
        """Build and validate a config from a nested dict. Unknown keys raise a TypeError."""
        config = cls(model=RBMConfig(**raw.get("model", {})),
                     training=TrainingConfig(**raw.get("training", {})))
        config.validate()
        return config

    @classmethod
    def from_yaml(cls,
                  path: str | Path) -> ExperimentConfig:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
        if raw is None:
            raise ValueError(f"Config file is empty: {path}")
        config = cls.from_dict(raw)
        logger.info("Config loaded from %s", path)
        return config

    def to_yaml(self,
                path: str | Path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(asdict(self), f, default_flow_style=False, sort_keys=False)
        logger.info("Config saved to %s", path)


def build_rbm(config: RBMConfig,
              inputs: VisibleBatch | None = None,
              observers: Iterable[TrainingObserver] | None = None) -> RBM:
    """Create an RBM with freshly initialized float64 parameters.

    Parameters:
        config: Architecture options. Validated here.
        inputs: Optional initial input batch for the model.
        observers: Passed on to the model.
    """
    config.validate()
    generator = torch.Generator()
    if config.seed is not None:
        generator.manual_seed(config.seed)
    else:
        generator.seed()

    if config.weight_init == "zero":
        parameters = RBMParameters.zeros(config.n_visible, config.n_hidden)
    else:
        parameters = RBMParameters.random(config.n_visible, config.n_hidden, generator)
    return RBM(config.n_visible, config.n_hidden,
               parameters.weights, parameters.hidden_bias, parameters.visible_bias,
               generator=generator,
               inputs=inputs,
               visible_bias_update=config.visible_bias_update,
               legacy_cross_entropy=config.legacy_cross_entropy,
               observers=observers)
