"""Contrastive divergence (CD-k) for binary RBMs.

The positive phase samples hidden units given the data. The negative phase runs k steps of Gibbs sampling, starting
from those hidden samples. The difference between the statistics of both phases approximates the log-likelihood
gradient. Parameters are then moved along this direction, in place by default.
"""
from typing import NamedTuple

import torch

from .parameters import RBMParameters
from .sampling import GibbsStep, MeanAndSample, gibbs_step, sample_hidden_given_visible
from ..errors import DimensionMismatchError, DTypeMismatchError, InvalidParameterError
from ..types import HiddenVector, VisibleBatch, VisibleVector, WeightMatrix


VISIBLE_BIAS_UPDATES = ("overwrite", "accumulate")


class CDGradients(NamedTuple):
    weights: WeightMatrix
    visible_bias: VisibleVector
    hidden_bias: HiddenVector


class CDResult(NamedTuple):
    """Outcome of one contrastive divergence call.

    Parameters:
        parameters: The updated parameters. This is the very object that was passed in, unless in_place=False.
        gradients: The gradient estimates, *before* scaling with the learning rate.
        positive: Hidden probabilities and samples given the data.
        negative: Output of the last Gibbs step of the chain.
    """
    parameters: RBMParameters
    gradients: CDGradients
    positive: MeanAndSample
    negative: GibbsStep


def check_training_arguments(parameters: RBMParameters,
                             inputs: VisibleBatch,
                             learning_rate: float,
                             k: int,
                             visible_bias_update: str = "overwrite"):
    """Raise if a CD call with these arguments cannot succeed. Nothing is modified here.

    Inputs and parameters must both be float64; nothing is cast implicitly.
    """
    if not learning_rate > 0:
        raise InvalidParameterError(f"learning_rate must be positive, got {learning_rate}")
    if k < 1:
        raise InvalidParameterError(f"k must be at least 1, got {k}")
    if visible_bias_update not in VISIBLE_BIAS_UPDATES:
        raise InvalidParameterError(f"Invalid visible_bias_update {visible_bias_update}. "
                                    f"Valid are {', '.join(VISIBLE_BIAS_UPDATES)}.")
    if inputs.dim() != 2:
        raise DimensionMismatchError(f"inputs must be a batch x n_visible matrix, got shape {tuple(inputs.shape)}")
    if inputs.shape[1] != parameters.n_visible:
        raise DimensionMismatchError(f"inputs have {inputs.shape[1]} columns, but the model has "
                                     f"{parameters.n_visible} visible units")
    if inputs.dtype != torch.float64:
        raise DTypeMismatchError(f"inputs must be float64, got {inputs.dtype}")
    parameters.validate()


def cd_gradients(parameters: RBMParameters,
                 inputs: VisibleBatch,
                 k: int,
                 generator: torch.Generator | None = None) -> tuple[CDGradients, MeanAndSample, GibbsStep]:
    """Estimate the gradients via k steps of Gibbs sampling. Parameters are not modified.

    The chain is driven by hidden *samples* at every step. Negative statistics come from the final step only.

    Parameters:
        parameters: Current model parameters.
        inputs: Data batch, batch x n_visible with entries in [0, 1].
        k: Number of Gibbs steps. Must be >= 1 (not checked here; see check_training_arguments).
        generator: Random state shared by all Bernoulli draws.
    """
    positive = sample_hidden_given_visible(parameters, inputs, generator)
    chain = positive.sample
    for _ in range(k):
        negative = gibbs_step(parameters, chain, generator)
        chain = negative.hidden_sample

    weights_gradient = inputs.T @ positive.sample - negative.visible_sample.T @ negative.hidden_mean
    visible_bias_gradient = (inputs - negative.visible_sample).mean(dim=0)
    hidden_bias_gradient = (positive.sample - negative.hidden_mean).mean(dim=0)
    return CDGradients(weights_gradient, visible_bias_gradient, hidden_bias_gradient), positive, negative


@torch.no_grad()
def apply_update(parameters: RBMParameters,
                 gradients: CDGradients,
                 learning_rate: float,
                 visible_bias_update: str = "overwrite"):
    """Move parameters along the gradients, in place.

    Weights and hidden biases are always accumulated. The visible bias is either overwritten with
    learning_rate * gradient ('overwrite') or accumulated like the others ('accumulate').
    """
    parameters.weights.add_(gradients.weights, alpha=learning_rate)
    if visible_bias_update == "overwrite":
        parameters.visible_bias.copy_(learning_rate * gradients.visible_bias)
    else:
        parameters.visible_bias.add_(gradients.visible_bias, alpha=learning_rate)
    parameters.hidden_bias.add_(gradients.hidden_bias, alpha=learning_rate)


def contrastive_divergence(parameters: RBMParameters,
                           inputs: VisibleBatch,
                           learning_rate: float,
                           k: int = 1,
                           generator: torch.Generator | None = None,
                           visible_bias_update: str = "overwrite",
                           in_place: bool = True) -> CDResult:
    """One CD-k training step: estimate gradients and update the parameters.

    All arguments are validated first. If validation fails, neither the parameters nor the generator are touched.

    Parameters:
        parameters: Parameters to train.
        inputs: Data batch, batch x n_visible.
        learning_rate: Step size, > 0.
        k: Gibbs steps for the negative phase, >= 1.
        generator: Random state. Use a seeded one for reproducible results.
        visible_bias_update: See apply_update.
        in_place: If False, the passed parameters stay as they are and the update is applied to a copy, which is
                  returned in the result.
    """
    check_training_arguments(parameters, inputs, learning_rate, k, visible_bias_update)
    with torch.no_grad():
        gradients, positive, negative = cd_gradients(parameters, inputs, k, generator)
    if not in_place:
        parameters = parameters.clone()
    apply_update(parameters, gradients, learning_rate, visible_bias_update)
    return CDResult(parameters, gradients, positive, negative)
