from typing import NamedTuple

import torch

from .parameters import RBMParameters
from .propagation import prop_down, prop_up
from ..types import HiddenBatch, TabularBatchFloat, VisibleBatch


class MeanAndSample(NamedTuple):
    """Conditional probabilities of one layer together with a binary sample drawn from them."""
    mean: TabularBatchFloat
    sample: TabularBatchFloat


class GibbsStep(NamedTuple):
    """Everything produced by one hidden -> visible -> hidden round trip."""
    visible_mean: VisibleBatch
    visible_sample: VisibleBatch
    hidden_mean: HiddenBatch
    hidden_sample: HiddenBatch


def bernoulli(probabilities: TabularBatchFloat,
              generator: torch.Generator | None = None) -> TabularBatchFloat:
    """Draw one independent 0/1 trial per entry, with success probability given by that entry.

    The result has the same shape and dtype as the input. Probabilities of exactly 0 or 1 always give 0 or 1.

    Parameters:
        probabilities: Tensor with entries in [0, 1].
        generator: Random state to draw from. This is advanced by every call.
    """
    return torch.bernoulli(probabilities, generator=generator)


def sample_hidden_given_visible(parameters: RBMParameters,
                                visible: VisibleBatch,
                                generator: torch.Generator | None = None) -> MeanAndSample:
    h_mean = prop_up(parameters, visible)
    return MeanAndSample(h_mean, bernoulli(h_mean, generator))


def sample_visible_given_hidden(parameters: RBMParameters,
                                hidden: HiddenBatch,
                                generator: torch.Generator | None = None) -> MeanAndSample:
    v_mean = prop_down(parameters, hidden)
    return MeanAndSample(v_mean, bernoulli(v_mean, generator))


def gibbs_step(parameters: RBMParameters,
               hidden: HiddenBatch,
               generator: torch.Generator | None = None) -> GibbsStep:
    """A single Gibbs step starting from the hidden layer: h -> v -> h.

    Note that the new hidden layer is conditioned on the visible *sample*, not the visible probabilities.
    """
    v_mean, v_sample = sample_visible_given_hidden(parameters, hidden, generator)
    h_mean, h_sample = sample_hidden_given_visible(parameters, v_sample, generator)
    return GibbsStep(v_mean, v_sample, h_mean, h_sample)
