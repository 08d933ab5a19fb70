from __future__ import annotations

import math
from dataclasses import dataclass

import torch

from ..errors import DimensionMismatchError, DTypeMismatchError
from ..types import HiddenVector, VisibleVector, WeightMatrix


@dataclass
class RBMParameters:
    """Everything that defines a binary RBM: the weight matrix and both bias vectors.

    This is a plain value. Functions in the rbm package take it as an argument and, for training, update it in place
    or return an updated copy. Use clone() if you need an independent snapshot.

    Parameters:
        weights: n_visible x n_hidden matrix connecting the layers.
        hidden_bias: Vector with one bias per hidden unit.
        visible_bias: Vector with one bias per visible unit.
    """
    weights: WeightMatrix
    hidden_bias: HiddenVector
    visible_bias: VisibleVector

    @property
    def n_visible(self) -> int:
        return self.weights.shape[0]

    @property
    def n_hidden(self) -> int:
        return self.weights.shape[1]

    def validate(self,
                 n_visible: int | None = None,
                 n_hidden: int | None = None):
        """Check that all shapes are consistent with each other and, if given, with the declared layer sizes.

        All tensors must be float64.
        """
        if self.weights.dim() != 2:
            raise DimensionMismatchError(f"weights must be a matrix, got shape {tuple(self.weights.shape)}")
        if self.hidden_bias.dim() != 1 or self.visible_bias.dim() != 1:
            raise DimensionMismatchError(f"biases must be vectors, got shapes {tuple(self.hidden_bias.shape)} and "
                                         f"{tuple(self.visible_bias.shape)}")
        if n_visible is not None and self.n_visible != n_visible:
            raise DimensionMismatchError(f"weights have {self.n_visible} rows, but n_visible is {n_visible}")
        if n_hidden is not None and self.n_hidden != n_hidden:
            raise DimensionMismatchError(f"weights have {self.n_hidden} columns, but n_hidden is {n_hidden}")
        if self.hidden_bias.shape[0] != self.n_hidden:
            raise DimensionMismatchError(f"hidden_bias has length {self.hidden_bias.shape[0]}, "
                                         f"expected {self.n_hidden}")
        if self.visible_bias.shape[0] != self.n_visible:
            raise DimensionMismatchError(f"visible_bias has length {self.visible_bias.shape[0]}, "
                                         f"expected {self.n_visible}")
        for name, tensor in [("weights", self.weights), ("hidden_bias", self.hidden_bias),
                             ("visible_bias", self.visible_bias)]:
            if tensor.dtype != torch.float64:
                raise DTypeMismatchError(f"{name} must be float64, got {tensor.dtype}")

    def clone(self) -> RBMParameters:
        return RBMParameters(self.weights.clone(), self.hidden_bias.clone(), self.visible_bias.clone())

    @classmethod
    def zeros(cls,
              n_visible: int,
              n_hidden: int) -> RBMParameters:
        """All-zero parameters. Every unit starts out with probability 0.5."""
        return cls(torch.zeros(n_visible, n_hidden, dtype=torch.float64),
                   torch.zeros(n_hidden, dtype=torch.float64),
                   torch.zeros(n_visible, dtype=torch.float64))

    @classmethod
    def random(cls,
               n_visible: int,
               n_hidden: int,
               generator: torch.Generator | None = None) -> RBMParameters:
        """Uniform weights in +-sqrt(6 / (n_visible + n_hidden)), zero biases.

        Parameters:
            n_visible, n_hidden: Layer sizes.
            generator: Source of randomness. Pass a seeded generator for reproducible initialization.
        """
        bound = math.sqrt(6. / (n_hidden + n_visible))
        weights = torch.rand(n_visible, n_hidden, generator=generator, dtype=torch.float64) * 2 * bound - bound
        return cls(weights, torch.zeros(n_hidden, dtype=torch.float64), torch.zeros(n_visible, dtype=torch.float64))
