"""This module uses jaxtyping to add more specific tensor types for RBM quantities."""
from typing import TypeAlias

from jaxtyping import Float
from torch import Tensor


VisibleBatch: TypeAlias = Float[Tensor, "batch n_visible"]
HiddenBatch: TypeAlias = Float[Tensor, "batch n_hidden"]
TabularBatchFloat: TypeAlias = Float[Tensor, "batch c"]

VisibleVector: TypeAlias = Float[Tensor, "n_visible"]
HiddenVector: TypeAlias = Float[Tensor, "n_hidden"]
WeightMatrix: TypeAlias = Float[Tensor, "n_visible n_hidden"]

ScalarFloat: TypeAlias = Float[Tensor, ""]
VectorBatchFloat: TypeAlias = Float[Tensor, "batch"]
