from __future__ import annotations

from collections.abc import Iterable

import torch
from torch import nn

from .divergence import VISIBLE_BIAS_UPDATES, CDResult, check_training_arguments, contrastive_divergence
from .metrics import free_energy, reconstruct, reconstruction_cross_entropy
from .observers import TrainingObserver
from .parameters import RBMParameters
from .propagation import prop_down, prop_up
from .sampling import (GibbsStep, MeanAndSample, bernoulli, gibbs_step, sample_hidden_given_visible,
                       sample_visible_given_hidden)
from ..errors import DimensionMismatchError, DTypeMismatchError, InvalidParameterError, MissingInputError
from ..types import HiddenBatch, HiddenVector, ScalarFloat, VectorBatchFloat, VisibleBatch, VisibleVector, WeightMatrix


class RBM(nn.Module):
    def __init__(self,
                 n_visible: int,
                 n_hidden: int,
                 weights: WeightMatrix | None = None,
                 hidden_bias: HiddenVector | None = None,
                 visible_bias: VisibleVector | None = None,
                 generator: torch.Generator | None = None,
                 inputs: VisibleBatch | None = None,
                 visible_bias_update: str = "overwrite",
                 legacy_cross_entropy: bool = False,
                 observers: Iterable[TrainingObserver] | None = None):
        """Binary RBM trained with contrastive divergence.

        Weights and biases are stored as buffers, not nn.Parameters: they are updated by the CD rule directly and
        never see autograd. They still end up in the state_dict and move with .to().

        The model is NOT thread-safe. Parameters, generator and stored input are shared mutable state. Serialize calls
        yourself or give each worker its own instance.

        Parameters:
            n_visible: Number of visible units, i.e. data dimensionality.
            n_hidden: Number of hidden units.
            weights, hidden_bias, visible_bias: Initial parameters. Any of them that is None starts out as zeros. Use
                                                cdrbm.config.build_rbm for random initialization.
                                                They must be float64 and are copied, never trained in place.
            generator: Random state for all sampling done by this model. A fresh unseeded one is created if None.
            inputs: Optional initial input batch. It is used whenever a method is called without inputs.
            visible_bias_update: 'overwrite' or 'accumulate'. See cdrbm.rbm.divergence.apply_update.
            legacy_cross_entropy: Passed as legacy_one_minus_input to the cross-entropy metric.
            observers: Objects whose step_done method is called after every contrastive_divergence call.
        """
        super().__init__()
        if n_visible < 1 or n_hidden < 1:
            raise InvalidParameterError(f"Layer sizes must be positive, got n_visible={n_visible}, "
                                        f"n_hidden={n_hidden}")
        if visible_bias_update not in VISIBLE_BIAS_UPDATES:
            raise InvalidParameterError(f"Invalid visible_bias_update {visible_bias_update}. "
                                        f"Valid are {', '.join(VISIBLE_BIAS_UPDATES)}.")
        self.n_visible = n_visible
        self.n_hidden = n_hidden

        initial = RBMParameters.zeros(n_visible, n_hidden)
        initial = RBMParameters(initial.weights if weights is None else weights,
                                initial.hidden_bias if hidden_bias is None else hidden_bias,
                                initial.visible_bias if visible_bias is None else visible_bias)
        initial.validate(n_visible, n_hidden)
        if inputs is not None:
            self._check_inputs(inputs)

        # Own copies, so training never writes into tensors the caller still holds.
        self.register_buffer("weights", initial.weights.detach().clone())
        self.register_buffer("hidden_bias", initial.hidden_bias.detach().clone())
        self.register_buffer("visible_bias", initial.visible_bias.detach().clone())

        self.generator = torch.Generator() if generator is None else generator
        self.inputs = inputs
        self.visible_bias_update = visible_bias_update
        self.legacy_cross_entropy = legacy_cross_entropy
        self.observers = list(observers) if observers is not None else []

    @property
    def parameters_state(self) -> RBMParameters:
        """The current parameters. These share memory with the model, so in-place changes affect the model."""
        return RBMParameters(self.weights, self.hidden_bias, self.visible_bias)

    @torch.no_grad()
    def load_parameters_state(self,
                              state: RBMParameters):
        """Copy the given parameters into the model. Shapes must match."""
        state.validate(self.n_visible, self.n_hidden)
        self.weights.copy_(state.weights)
        self.hidden_bias.copy_(state.hidden_bias)
        self.visible_bias.copy_(state.visible_bias)

    def add_observer(self,
                     observer: TrainingObserver):
        self.observers.append(observer)

    def contrastive_divergence(self,
                               learning_rate: float,
                               k: int = 1,
                               inputs: VisibleBatch | None = None):
        """Run one CD-k step on the given inputs (or the stored ones) and update the parameters in place.

        If inputs are given, they replace the stored inputs for later calls. If any argument is invalid, the error is
        raised before anything (parameters, stored inputs, generator) changes.

        Parameters:
            learning_rate: Step size, > 0.
            k: Number of Gibbs steps in the negative phase, >= 1.
            inputs: Batch x n_visible data batch with entries in [0, 1].
        """
        batch = self._resolve_inputs(inputs)
        check_training_arguments(self.parameters_state, batch, learning_rate, k, self.visible_bias_update)
        self.inputs = batch
        result = contrastive_divergence(self.parameters_state, batch, learning_rate, k, self.generator,
                                        visible_bias_update=self.visible_bias_update)
        self._notify(result)

    def reconstruction_cross_entropy(self,
                                     inputs: VisibleBatch | None = None) -> ScalarFloat:
        """Cross-entropy between inputs (default: the stored ones) and their reconstructions."""
        batch = self._resolve_inputs(inputs)
        self._check_inputs(batch)
        with torch.no_grad():
            return reconstruction_cross_entropy(self.parameters_state, batch, self.legacy_cross_entropy)

    @torch.no_grad()
    def reconstruct(self,
                    visible: VisibleBatch) -> VisibleBatch:
        return reconstruct(self.parameters_state, visible)

    @torch.no_grad()
    def prop_up(self,
                visible: VisibleBatch) -> HiddenBatch:
        return prop_up(self.parameters_state, visible)

    @torch.no_grad()
    def prop_down(self,
                  hidden: HiddenBatch) -> VisibleBatch:
        return prop_down(self.parameters_state, hidden)

    @torch.no_grad()
    def sample_hidden_given_visible(self,
                                    visible: VisibleBatch) -> MeanAndSample:
        return sample_hidden_given_visible(self.parameters_state, visible, self.generator)

    @torch.no_grad()
    def sample_visible_given_hidden(self,
                                    hidden: HiddenBatch) -> MeanAndSample:
        return sample_visible_given_hidden(self.parameters_state, hidden, self.generator)

    @torch.no_grad()
    def gibbs_step(self,
                   hidden: HiddenBatch) -> GibbsStep:
        return gibbs_step(self.parameters_state, hidden, self.generator)

    @torch.no_grad()
    def free_energy(self,
                    visible: VisibleBatch) -> VectorBatchFloat:
        return free_energy(self.parameters_state, visible)

    @torch.no_grad()
    def generate(self,
                 n_samples: int,
                 chain_length: int,
                 return_probs: bool = True) -> VisibleBatch:
        """Create samples from the RBM distribution via Markov chains.

        Chains start from uniformly random binary visible vectors.

        Parameters:
            n_samples: How many independent chains to run.
            chain_length: Number of h -> v -> h Gibbs steps after the initial v -> h step. Must be >= 1.
            return_probs: If True, return the visible probabilities of the last step instead of binary samples. These
                          are much smoother.
        """
        if chain_length < 1:
            raise InvalidParameterError(f"chain_length must be at least 1, got {chain_length}")
        start_probs = torch.full((n_samples, self.n_visible), 0.5, dtype=self.weights.dtype,
                                 device=self.weights.device)
        initial_v = bernoulli(start_probs, self.generator)
        hidden = self.sample_hidden_given_visible(initial_v).sample
        for _ in range(chain_length):
            step = self.gibbs_step(hidden)
            hidden = step.hidden_sample
        return step.visible_mean if return_probs else step.visible_sample

    def _resolve_inputs(self,
                        inputs: VisibleBatch | None) -> VisibleBatch:
        if inputs is not None:
            return inputs
        if self.inputs is None:
            raise MissingInputError("No inputs given, and none are stored in the model.")
        return self.inputs

    def _check_inputs(self,
                      inputs: VisibleBatch):
        if inputs.dim() != 2 or inputs.shape[1] != self.n_visible:
            raise DimensionMismatchError(f"inputs must have shape batch x {self.n_visible}, "
                                         f"got {tuple(inputs.shape)}")
        if inputs.dtype != torch.float64:
            raise DTypeMismatchError(f"inputs must be float64, got {inputs.dtype}")

    def _notify(self,
                result: CDResult):
        for observer in self.observers:
            observer.step_done(self, result)
