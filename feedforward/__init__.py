"""
feedforward package
~~~~~~~~~~~~~~~~~~~

Fully-connected neural network training core for MNIST digit recognition.
Contains the layer and network implementation, activation functions,
MNIST data loading, the training driver and the API server.
"""

from feedforward.activations import ActivationKind
from feedforward.exceptions import (
    NetworkError,
    ArchitectureMismatch,
    PreconditionViolation,
    DatasetFormatError
)
from feedforward.layer import Layer
from feedforward.network import Network
from feedforward.random_source import RandomSource

__version__ = "1.0.0"

__all__ = [
    'ActivationKind',
    'ArchitectureMismatch',
    'DatasetFormatError',
    'Layer',
    'Network',
    'NetworkError',
    'PreconditionViolation',
    'RandomSource',
]
