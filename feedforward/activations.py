"""
activations.py
~~~~~~~~~~~~~~

Activation functions and their gradients.

Each activation is a pair of stateless functions over a 1-D vector,
selected through the ActivationKind enumeration. All functions return a
new array and never modify their argument.

Note on the sigmoid family: the formulas below are kept exactly as the
network has always been trained with them, which differs from the textbook
definitions:

- sigmoid(x) = 1 / (1 + e^x), the mirror image of the usual logistic curve
- sigmoid gradient = sigmoid(x) / (1 - sigmoid(x)), not sigmoid * (1 - sigmoid)
- swish gradient = swish(x) + sigmoid(x) * (1 - swish(x))

Changing any of them changes how existing hyperparameters behave, so they
stay as they are until the training results are re-validated.
"""

from enum import Enum
from typing import Callable, Dict, Union

import numpy as np

# exp() overflows float64 a little above 709
EXP_CLIP = 500.0

# Smallest denominator used by the sigmoid gradient
GRADIENT_EPSILON = 1e-12


def _as_vector(x) -> np.ndarray:
    return np.array(x, dtype=np.float64)


def sigmoid(x: np.ndarray) -> np.ndarray:
    """Sigmoid activation: f(x) = 1 / (1 + e^x)."""
    x = np.clip(_as_vector(x), -EXP_CLIP, EXP_CLIP)
    return 1.0 / (1.0 + np.exp(x))


def sigmoid_gradient(x: np.ndarray) -> np.ndarray:
    """Sigmoid gradient: f(x) / (1 - f(x))."""
    s = sigmoid(x)
    return s / np.maximum(1.0 - s, GRADIENT_EPSILON)


def relu(x: np.ndarray) -> np.ndarray:
    """ReLU activation: f(x) = max(x, 0)."""
    return np.maximum(_as_vector(x), 0.0)


def relu_gradient(x: np.ndarray) -> np.ndarray:
    """ReLU gradient: 1 for x > 0, else 0 (including at x = 0)."""
    return (_as_vector(x) > 0).astype(np.float64)


def swish(x: np.ndarray) -> np.ndarray:
    """Swish activation: f(x) = x * sigmoid(x)."""
    x = _as_vector(x)
    return x * sigmoid(x)


def swish_gradient(x: np.ndarray) -> np.ndarray:
    """Swish gradient: swish(x) + sigmoid(x) * (1 - swish(x))."""
    sw = swish(x)
    return sw + sigmoid(x) * (1.0 - sw)


def softmax(v: np.ndarray) -> np.ndarray:
    """
    Softmax over the whole vector.

    The maximum is subtracted before exponentiating so large inputs can't
    overflow; the result is mathematically unchanged.
    """
    v = _as_vector(v)
    e = np.exp(v - np.max(v))
    return e / np.sum(e)


def softmax_gradient(v: np.ndarray) -> np.ndarray:
    """
    Identity pass-through.

    Softmax is only used on the output layer, where Network.backward starts
    from (output - target) and never asks for this gradient.
    """
    return _as_vector(v)


class ActivationKind(Enum):
    """Selects the activation used by a layer."""

    RELU = 'relu'
    SIGMOID = 'sigmoid'
    SWISH = 'swish'
    SOFTMAX = 'softmax'

    @classmethod
    def from_name(cls, name: Union[str, 'ActivationKind']) -> 'ActivationKind':
        """
        Resolve an activation from its name (case-insensitive).

        Raises:
            ValueError: If the name is not a known activation
        """
        if isinstance(name, cls):
            return name
        if not isinstance(name, str):
            raise ValueError(f"Activation name must be a string, got {name!r}")
        try:
            return cls(name.strip().lower())
        except ValueError:
            known = ', '.join(kind.value for kind in cls)
            raise ValueError(
                f"Unknown activation '{name}'. Expected one of: {known}"
            ) from None

    def activation(self, x: np.ndarray) -> np.ndarray:
        return _ACTIVATIONS[self](x)

    def gradient(self, x: np.ndarray) -> np.ndarray:
        return _GRADIENTS[self](x)


_ACTIVATIONS: Dict[ActivationKind, Callable[[np.ndarray], np.ndarray]] = {
    ActivationKind.RELU: relu,
    ActivationKind.SIGMOID: sigmoid,
    ActivationKind.SWISH: swish,
    ActivationKind.SOFTMAX: softmax,
}

_GRADIENTS: Dict[ActivationKind, Callable[[np.ndarray], np.ndarray]] = {
    ActivationKind.RELU: relu_gradient,
    ActivationKind.SIGMOID: sigmoid_gradient,
    ActivationKind.SWISH: swish_gradient,
    ActivationKind.SOFTMAX: softmax_gradient,
}


def activation(kind: Union[str, ActivationKind], x: np.ndarray) -> np.ndarray:
    """Apply the named activation to x."""
    return ActivationKind.from_name(kind).activation(x)


def gradient(kind: Union[str, ActivationKind], x: np.ndarray) -> np.ndarray:
    """Apply the named activation's gradient to x."""
    return ActivationKind.from_name(kind).gradient(x)
