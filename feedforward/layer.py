"""
layer.py
~~~~~~~~

A fully-connected layer with its own weights and gradient accumulator.

The bias is not stored separately: every input is augmented with a
constant 1.0 and the weight matrix carries one extra row, so bias and
ordinary weights are accumulated and updated by the same code.
"""

import logging
from typing import Optional, Sequence, Union

import numpy as np

from feedforward.activations import ActivationKind
from feedforward.exceptions import ArchitectureMismatch, PreconditionViolation
from feedforward.random_source import RandomSource

logger = logging.getLogger(__name__)


class Layer:
    """
    One affine transform followed by an activation.

    Attributes:
        in_size: Length of the (unaugmented) input vector
        out_size: Number of output units
        weights: Matrix of shape (in_size + 1, out_size); the last row is
            the bias row
        grad_accum: Sum of per-sample gradients since the last update,
            same shape as weights
        sample_count: Number of update_grad calls since the last update
        activation: The ActivationKind applied to the pre-activation

    forward() caches the augmented input, the pre-activation u and the
    output. calc_delta() and update_grad() read that cache, so for any
    sample they must follow forward() on the same sample with no other
    forward() in between. Only the "never ran forward" case is detected;
    a stale cache from an unrelated sample silently produces wrong
    gradients.
    """

    def __init__(
        self,
        in_size: int,
        out_size: int,
        activation: Union[str, ActivationKind],
        rng: Optional[RandomSource] = None
    ):
        """
        Create a layer with randomly initialized weights.

        Args:
            in_size: Length of the input vector (without the bias entry)
            out_size: Number of output units
            activation: ActivationKind or its name
            rng: Source of initial weights; defaults to an unseeded
                RandomSource(0.0, 1.0)

        Raises:
            ValueError: If a size is not a positive integer or the
                activation is unknown
        """
        for name, size in (('in_size', in_size), ('out_size', out_size)):
            if isinstance(size, bool) or not isinstance(size, (int, np.integer)) or size < 1:
                raise ValueError(f"{name} must be a positive integer, got {size!r}")

        self.in_size = int(in_size)
        self.out_size = int(out_size)
        self.activation = ActivationKind.from_name(activation)

        rng = rng if rng is not None else RandomSource(0.0, 1.0)
        augmented_size = self.in_size + 1
        self.weights = rng.draw_matrix((augmented_size, self.out_size)) / augmented_size
        self.grad_accum = np.zeros_like(self.weights)
        self.sample_count = 0

        # Filled in by forward()
        self.augmented_input: Optional[np.ndarray] = None
        self.u: Optional[np.ndarray] = None
        self.output: Optional[np.ndarray] = None

    @property
    def shape(self):
        """(in_size, out_size) as configured, without the bias row."""
        return self.in_size, self.out_size

    def forward(self, input_vector: Sequence[float]) -> np.ndarray:
        """
        Project the input through the layer.

        Args:
            input_vector: Vector of length in_size

        Returns:
            Output vector of length out_size

        Raises:
            ArchitectureMismatch: If the input has the wrong length
        """
        x = np.asarray(input_vector, dtype=np.float64).ravel()
        if x.shape[0] != self.in_size:
            raise ArchitectureMismatch(
                f"Layer expects input of length {self.in_size}, got {x.shape[0]}"
            )

        self.augmented_input = np.append(x, 1.0)
        self.u = self.augmented_input @ self.weights
        self.output = self.activation.activation(self.u)
        return self.output

    def calc_delta(
        self,
        next_delta: Sequence[float],
        next_weights: np.ndarray
    ) -> np.ndarray:
        """
        Backpropagate the downstream layer's delta into this layer.

        delta[j] = gradient(u)[j] * sum_k next_delta[k] * next_weights[j][k]

        Args:
            next_delta: Delta of the following layer (length = its out_size)
            next_weights: Weight matrix of the following layer; its bias
                row is not used

        Returns:
            This layer's delta, length out_size
        """
        self._require_forward('calc_delta')
        next_delta = np.asarray(next_delta, dtype=np.float64).ravel()
        next_weights = np.asarray(next_weights, dtype=np.float64)

        if next_weights.shape[0] < self.out_size or next_weights.shape[1] != next_delta.shape[0]:
            raise ArchitectureMismatch(
                f"Cannot backpropagate delta of length {next_delta.shape[0]} "
                f"through weights of shape {next_weights.shape} "
                f"into a layer with {self.out_size} outputs"
            )

        propagated = next_weights[:self.out_size] @ next_delta
        return self.activation.gradient(self.u) * propagated

    def update_grad(self, delta: Sequence[float]) -> None:
        """
        Accumulate the gradient of one sample.

        Adds the outer product of the cached augmented input and delta to
        the accumulator and counts the sample.
        """
        self._require_forward('update_grad')
        delta = np.asarray(delta, dtype=np.float64).ravel()
        if delta.shape[0] != self.out_size:
            raise ArchitectureMismatch(
                f"Delta must have length {self.out_size}, got {delta.shape[0]}"
            )

        self.grad_accum += np.outer(self.augmented_input, delta)
        self.sample_count += 1

    def update_param(self, learning_rate: float) -> None:
        """
        Apply the batch-averaged gradient and reset the accumulator.

        Does nothing if no samples were accumulated since the last update.
        """
        if self.sample_count == 0:
            logger.debug("update_param called with no accumulated samples, skipping")
            return

        self.weights -= learning_rate * self.grad_accum / self.sample_count
        self.grad_accum.fill(0.0)
        self.sample_count = 0

    def _require_forward(self, operation: str) -> None:
        if self.augmented_input is None:
            raise PreconditionViolation(
                f"{operation} requires a preceding forward() on this layer"
            )

    def __repr__(self) -> str:
        return (
            f"Layer(in_size={self.in_size}, out_size={self.out_size}, "
            f"activation={self.activation.value})"
        )
