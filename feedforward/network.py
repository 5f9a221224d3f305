"""
network.py
~~~~~~~~~~

A feed-forward network built from a sequence of fully-connected layers.

Training follows a per-sample protocol driven from outside:

    for each sample in a batch:
        network.forward(x)
        network.backward(target)
    network.update_param(learning_rate)

backward() starts from the shortcut delta (output - target), which is the
exact gradient only when the last layer is softmax and the loss is
cross-entropy (calc_loss). Other output activations train against a wrong
gradient; a warning is logged once per network when that happens.
"""

import logging
from typing import List, Optional, Sequence, Union

import numpy as np

from feedforward.activations import ActivationKind
from feedforward.exceptions import ArchitectureMismatch, PreconditionViolation
from feedforward.layer import Layer
from feedforward.random_source import RandomSource

logger = logging.getLogger(__name__)

# Lower bound for the probabilities passed to log() in calc_loss
LOSS_EPSILON = 1e-12


class Network:
    """
    Ordered stack of layers trained with mini-batch gradient descent.

    Attributes:
        layers: The layers in forward order
        verbose: When set, backward() logs every layer's delta
    """

    def __init__(
        self,
        verbose: bool = False,
        seed: Optional[int] = None,
        rng: Optional[RandomSource] = None
    ):
        """
        Create an empty network.

        Args:
            verbose: Log per-layer deltas during backward()
            seed: Seed for the weights of layers built by add_layer()
            rng: Explicit random source; takes precedence over seed
        """
        self.verbose = verbose
        self.layers: List[Layer] = []
        self.rng = rng if rng is not None else RandomSource(0.0, 1.0, seed=seed)
        self._warned_output_activation = False

    def add_layer(
        self,
        in_size: int,
        out_size: int,
        activation: Union[str, ActivationKind]
    ) -> Layer:
        """
        Build a layer from the network's random source and append it.

        Returns:
            The new layer

        Raises:
            ArchitectureMismatch: If in_size doesn't match the previous
                layer's out_size
        """
        # Check before drawing weights so a rejected layer doesn't consume
        # random numbers
        self._check_chain(in_size)
        layer = Layer(in_size, out_size, activation, rng=self.rng)
        return self.append_layer(layer)

    def append_layer(self, layer: Layer) -> Layer:
        """
        Append an existing layer.

        Raises:
            ArchitectureMismatch: If layer.in_size doesn't match the previous
                layer's out_size
        """
        self._check_chain(layer.in_size)
        self.layers.append(layer)
        logger.debug(f"Added layer {len(self.layers) - 1}: {layer!r}")
        return layer

    def _check_chain(self, in_size: int) -> None:
        if self.layers and self.layers[-1].out_size != in_size:
            raise ArchitectureMismatch(
                f"Layer {len(self.layers)} expects {in_size} inputs but the "
                f"previous layer produces {self.layers[-1].out_size}"
            )

    @property
    def output_layer(self) -> Layer:
        if not self.layers:
            raise PreconditionViolation("Network has no layers")
        return self.layers[-1]

    @property
    def layer_sizes(self) -> List[int]:
        """Input size followed by every layer's output size."""
        if not self.layers:
            return []
        return [self.layers[0].in_size] + [layer.out_size for layer in self.layers]

    @property
    def weights(self) -> List[np.ndarray]:
        """Read-only views of each layer's weight matrix."""
        views = []
        for layer in self.layers:
            view = layer.weights.view()
            view.flags.writeable = False
            views.append(view)
        return views

    def forward(self, input_vector: Sequence[float]) -> np.ndarray:
        """
        Feed the input through every layer.

        Returns:
            The output of the last layer
        """
        if not self.layers:
            raise PreconditionViolation("Network has no layers")

        buffer = np.asarray(input_vector, dtype=np.float64)
        for layer in self.layers:
            buffer = layer.forward(buffer)
        return buffer

    def predict(self, input_vector: Sequence[float]) -> int:
        """Return the index of the largest output."""
        return int(np.argmax(self.forward(input_vector)))

    def backward(self, target: Sequence[float]) -> None:
        """
        Backpropagate the error for the most recent forward() call.

        Accumulates gradients in every layer; weights are not changed
        until update_param().

        Raises:
            ArchitectureMismatch: If the target has the wrong length
            PreconditionViolation: If forward() hasn't run yet
        """
        last = self.output_layer
        target = self._as_target(target)
        if last.output is None:
            raise PreconditionViolation("backward() requires a preceding forward()")

        if last.activation is not ActivationKind.SOFTMAX and not self._warned_output_activation:
            logger.warning(
                f"Output layer uses {last.activation.value}; backward() assumes "
                f"softmax with cross-entropy loss and the gradients will be wrong"
            )
            self._warned_output_activation = True

        delta = last.output - target
        self._trace(len(self.layers) - 1, delta)
        last.update_grad(delta)

        for index in range(len(self.layers) - 2, -1, -1):
            layer = self.layers[index]
            delta = layer.calc_delta(delta, self.layers[index + 1].weights)
            layer.update_grad(delta)
            self._trace(index, delta)

    def calc_loss(self, target: Sequence[float]) -> float:
        """
        Cross-entropy of the most recent output against target.

        Outputs are clamped to LOSS_EPSILON before taking the log so a
        saturated softmax yields a large finite loss instead of infinity.
        """
        last = self.output_layer
        target = self._as_target(target)
        if last.output is None:
            raise PreconditionViolation("calc_loss() requires a preceding forward()")

        probabilities = np.maximum(last.output, LOSS_EPSILON)
        return float(-np.sum(target * np.log(probabilities)))

    def update_param(self, learning_rate: float = 0.1) -> None:
        """Apply the accumulated batch gradients in every layer."""
        for layer in self.layers:
            layer.update_param(learning_rate)

    def _as_target(self, target: Sequence[float]) -> np.ndarray:
        target = np.asarray(target, dtype=np.float64).ravel()
        if target.shape[0] != self.output_layer.out_size:
            raise ArchitectureMismatch(
                f"Target must have length {self.output_layer.out_size}, "
                f"got {target.shape[0]}"
            )
        return target

    def _trace(self, index: int, delta: np.ndarray) -> None:
        if self.verbose:
            values = ' '.join(f"{value:.6g}" for value in delta)
            logger.info(f"delta of layer {index}: {values}")

    def __len__(self) -> int:
        return len(self.layers)

    def __repr__(self) -> str:
        return f"Network(layer_sizes={self.layer_sizes}, verbose={self.verbose})"
