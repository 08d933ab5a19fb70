"""This package contains functionalities for training binary Restricted Boltzmann Machines.

Training uses the contrastive divergence (CD-k) approximation with Gibbs-sampled Markov chains. Models are meant as
feature learners / pretraining blocks, so the focus is on the single-layer update rule, its metrics, and the plumbing
around it (configuration, observers, snapshot storage).
"""
__version__ = "0.1.0"
