"""Training utilities that are not specific to the RBM update rule: early stopping and checkpointing."""
from .training import Checkpointer, EarlyStopping, ParameterTracker
