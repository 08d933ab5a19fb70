import torch

from .parameters import RBMParameters
from ..types import HiddenBatch, VisibleBatch


def sigmoid(x: torch.Tensor) -> torch.Tensor:
    """1 / (1 + exp(-x)). No clamping, so huge inputs saturate to exactly 0 or 1."""
    return 1. / (1. + torch.exp(-x))


def prop_up(parameters: RBMParameters,
            visible: VisibleBatch) -> HiddenBatch:
    """Get conditional probabilities p(h|v)."""
    return sigmoid(visible @ parameters.weights + parameters.hidden_bias)


def prop_down(parameters: RBMParameters,
              hidden: HiddenBatch) -> VisibleBatch:
    """Get conditional probabilities p(v|h)."""
    return sigmoid(hidden @ parameters.weights.T + parameters.visible_bias)
