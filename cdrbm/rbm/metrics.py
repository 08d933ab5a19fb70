import torch
from torch import nn

from .parameters import RBMParameters
from .propagation import prop_down, prop_up, sigmoid
from ..types import ScalarFloat, VectorBatchFloat, VisibleBatch


def reconstruct(parameters: RBMParameters,
                visible: VisibleBatch) -> VisibleBatch:
    """Deterministic reconstruction: propagate up, then down again. No sampling anywhere."""
    return prop_down(parameters, prop_up(parameters, visible))


def reconstruction_cross_entropy(parameters: RBMParameters,
                                 inputs: VisibleBatch,
                                 legacy_one_minus_input: bool = False) -> ScalarFloat:
    """Binary cross-entropy between inputs and their mean-field reconstructions, averaged over the batch.

    Per row, we sum input * log(p) + (1 - input) * log(1 - p) over the visible units, with p the reconstruction
    probabilities. The result is the negative mean of these sums. There is no clamping: saturated reconstructions
    give inf or nan.

    Parameters:
        parameters: Model parameters.
        inputs: Batch to reconstruct, entries in [0, 1].
        legacy_one_minus_input: If True, the "1 - input" factor is computed as min(1, input) instead. This is not
                                cross-entropy anymore, but reproduces numbers reported by older implementations. The
                                two agree only where input is 0.5.
    """
    sig_h = sigmoid(inputs @ parameters.weights + parameters.hidden_bias)
    sig_v = sigmoid(sig_h @ parameters.weights.T + parameters.visible_bias)

    if legacy_one_minus_input:
        one_minus_input = torch.minimum(torch.ones_like(inputs), inputs)
    else:
        one_minus_input = 1. - inputs
    row_scores = (inputs * torch.log(sig_v) + one_minus_input * torch.log(1. - sig_v)).sum(dim=1)
    return -row_scores.mean()


def free_energy(parameters: RBMParameters,
                visible: VisibleBatch) -> VectorBatchFloat:
    """Free energy F(v) = -v.b_v - sum_j softplus(v.W + b_h)_j, one value per row."""
    hidden_term = nn.functional.softplus(visible @ parameters.weights + parameters.hidden_bias).sum(dim=1)
    return -(visible @ parameters.visible_bias) - hidden_term
