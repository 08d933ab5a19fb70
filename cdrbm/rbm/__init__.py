"""This module contains functionalities for binary Restricted Boltzmann Machines trained with contrastive divergence.

The numerical core is a set of free functions working on an RBMParameters value (propagation, sampling, CD-k,
metrics). The RBM class wraps one such value together with a random generator and an input batch, and notifies
observers after each training step. RBMTrainer runs the usual epoch loop on top.
"""
from .divergence import CDGradients, CDResult, apply_update, cd_gradients, contrastive_divergence
from .metrics import free_energy, reconstruct, reconstruction_cross_entropy
from .model import RBM
from .observers import HistoryObserver, StorageObserver, TensorBoardObserver, TrainingObserver
from .parameters import RBMParameters
from .propagation import prop_down, prop_up, sigmoid
from .sampling import (GibbsStep, MeanAndSample, bernoulli, gibbs_step, sample_hidden_given_visible,
                       sample_visible_given_hidden)
from .trainer import RBMTrainer
