"""
test_network.py
~~~~~~~~~~~~~~~

Unit and integration tests for the network: layer chaining, forward,
backpropagation, loss and batch updates.
"""

import os
import sys
import logging

import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from feedforward.activations import ActivationKind
from feedforward.exceptions import ArchitectureMismatch, PreconditionViolation
from feedforward.layer import Layer
from feedforward.network import LOSS_EPSILON, Network


@pytest.fixture
def simple_network():
    """Create a seeded 4 -> 3 (relu) -> 2 (softmax) network."""
    net = Network(seed=42)
    net.add_layer(4, 3, ActivationKind.RELU)
    net.add_layer(3, 2, ActivationKind.SOFTMAX)
    return net


@pytest.fixture
def batch():
    """Five synthetic samples with one-hot labels."""
    rng = np.random.default_rng(0)
    samples = []
    for i in range(5):
        x = rng.uniform(0.0, 1.0, size=4)
        y = np.zeros(2)
        y[i % 2] = 1.0
        samples.append((x, y))
    return samples


def mean_loss(net, samples):
    total = 0.0
    for x, y in samples:
        net.forward(x)
        total += net.calc_loss(y)
    return total / len(samples)


@pytest.mark.unit
class TestNetworkArchitecture:
    """Test building networks layer by layer."""

    def test_add_layer_returns_layer(self):
        """Test that add_layer builds and appends a layer."""
        net = Network()
        layer = net.add_layer(3, 5, 'relu')
        assert isinstance(layer, Layer)
        assert net.layers == [layer]
        assert len(net) == 1

    def test_layer_sizes(self, simple_network):
        """Test the reported layer sizes."""
        assert simple_network.layer_sizes == [4, 3, 2]
        assert Network().layer_sizes == []

    def test_mismatched_layer_rejected(self):
        """Test that out_size 3 followed by in_size 4 is rejected eagerly."""
        net = Network()
        net.add_layer(2, 3, ActivationKind.RELU)

        with pytest.raises(ArchitectureMismatch):
            net.add_layer(4, 2, ActivationKind.SOFTMAX)

        assert len(net) == 1

    def test_append_layer_validates(self):
        """Test that prebuilt layers are checked too."""
        net = Network()
        net.append_layer(Layer(2, 3, 'relu'))
        with pytest.raises(ArchitectureMismatch):
            net.append_layer(Layer(4, 2, 'softmax'))
        net.append_layer(Layer(3, 2, 'softmax'))
        assert net.layer_sizes == [2, 3, 2]

    def test_same_seed_same_weights(self):
        """Test that seeded networks are reproducible."""
        a = Network(seed=3)
        b = Network(seed=3)
        for net in (a, b):
            net.add_layer(5, 4, 'swish')
            net.add_layer(4, 3, 'softmax')
        for wa, wb in zip(a.weights, b.weights):
            assert np.array_equal(wa, wb)

    def test_weights_are_read_only(self, simple_network):
        """Test that the weights property can't be used to mutate layers."""
        with pytest.raises(ValueError):
            simple_network.weights[0][0, 0] = 1.0

    def test_empty_network_raises(self):
        """Test that an empty network can't run."""
        net = Network()
        with pytest.raises(PreconditionViolation):
            net.forward([1.0])
        with pytest.raises(PreconditionViolation):
            net.backward([1.0])


@pytest.mark.unit
class TestNetworkForward:
    """Test chained forward passes."""

    def test_output_is_probability_vector(self, simple_network):
        """Test that a softmax output sums to one."""
        out = simple_network.forward([0.1, 0.2, 0.3, 0.4])
        assert out.shape == (2,)
        assert np.isclose(out.sum(), 1.0)

    def test_forward_is_deterministic(self, simple_network):
        """Test bit-identical outputs for identical inputs."""
        x = [0.5, -0.5, 1.0, 2.0]
        assert np.array_equal(simple_network.forward(x), simple_network.forward(x))

    def test_predict_returns_argmax(self, simple_network):
        """Test that predict picks the largest output."""
        x = [0.3, 0.3, 0.9, 0.1]
        assert simple_network.predict(x) == int(np.argmax(simple_network.forward(x)))

    def test_wrong_input_length_raises(self, simple_network):
        """Test that the first layer rejects a wrong-size input."""
        with pytest.raises(ArchitectureMismatch):
            simple_network.forward([1.0, 2.0])


@pytest.mark.unit
class TestNetworkBackward:
    """Test backpropagation and loss."""

    def test_backward_before_forward_raises(self, simple_network):
        """Test that backward needs a cached forward pass."""
        with pytest.raises(PreconditionViolation):
            simple_network.backward([1.0, 0.0])

    def test_target_length_checked(self, simple_network):
        """Test that targets must match the output size."""
        simple_network.forward([1.0, 1.0, 1.0, 1.0])
        with pytest.raises(ArchitectureMismatch):
            simple_network.backward([1.0, 0.0, 0.0])
        with pytest.raises(ArchitectureMismatch):
            simple_network.calc_loss([1.0])

    def test_backward_accumulates_in_every_layer(self, simple_network):
        """Test that one backward call counts one sample per layer."""
        simple_network.forward([0.1, 0.2, 0.3, 0.4])
        simple_network.backward([0.0, 1.0])
        for layer in simple_network.layers:
            assert layer.sample_count == 1
            assert np.any(layer.grad_accum != 0)

    def test_output_delta_is_output_minus_target(self, simple_network):
        """Test the output layer gradient for softmax + cross-entropy."""
        x = np.array([0.1, 0.2, 0.3, 0.4])
        target = np.array([1.0, 0.0])
        out = simple_network.forward(x)
        hidden = simple_network.layers[0].output

        simple_network.backward(target)

        expected = np.outer(np.append(hidden, 1.0), out - target)
        assert np.allclose(simple_network.layers[-1].grad_accum, expected)

    def test_gradient_matches_finite_differences(self, simple_network):
        """Test the accumulated gradient against a numerical estimate."""
        x = np.array([0.2, 0.9, 0.4, 0.6])
        target = np.array([0.0, 1.0])

        simple_network.forward(x)
        simple_network.backward(target)

        eps = 1e-6
        for layer in simple_network.layers:
            numeric = np.zeros_like(layer.weights)
            for i in range(layer.weights.shape[0]):
                for j in range(layer.weights.shape[1]):
                    original = layer.weights[i, j]
                    layer.weights[i, j] = original + eps
                    simple_network.forward(x)
                    loss_plus = simple_network.calc_loss(target)
                    layer.weights[i, j] = original - eps
                    simple_network.forward(x)
                    loss_minus = simple_network.calc_loss(target)
                    layer.weights[i, j] = original
                    numeric[i, j] = (loss_plus - loss_minus) / (2 * eps)

            assert np.allclose(layer.grad_accum, numeric, rtol=1e-4, atol=1e-7)

    def test_calc_loss_is_cross_entropy(self, simple_network):
        """Test loss = -sum(target * log(output))."""
        out = simple_network.forward([0.5, 0.5, 0.5, 0.5])
        assert np.isclose(simple_network.calc_loss([0.0, 1.0]), -np.log(out[1]))

    def test_calc_loss_is_clamped(self, simple_network):
        """Test that a zero probability gives a finite loss."""
        simple_network.forward([0.5, 0.5, 0.5, 0.5])
        simple_network.layers[-1].output = np.array([0.0, 1.0])
        loss = simple_network.calc_loss([1.0, 0.0])
        assert np.isfinite(loss)
        assert np.isclose(loss, -np.log(LOSS_EPSILON))

    def test_verbose_logs_deltas(self, caplog):
        """Test that verbose networks trace every layer's delta."""
        net = Network(verbose=True, seed=1)
        net.add_layer(2, 2, 'relu')
        net.add_layer(2, 2, 'softmax')
        net.forward([1.0, 1.0])

        with caplog.at_level(logging.INFO, logger='feedforward.network'):
            net.backward([1.0, 0.0])

        messages = [r.getMessage() for r in caplog.records]
        assert any(m.startswith('delta of layer 1') for m in messages)
        assert any(m.startswith('delta of layer 0') for m in messages)

    def test_verbose_does_not_change_results(self):
        """Test that tracing has no effect on gradients."""
        grads = []
        for verbose in (False, True):
            net = Network(verbose=verbose, seed=9)
            net.add_layer(3, 3, 'swish')
            net.add_layer(3, 2, 'softmax')
            net.forward([0.2, 0.4, 0.6])
            net.backward([0.0, 1.0])
            grads.append([layer.grad_accum.copy() for layer in net.layers])
        for a, b in zip(*grads):
            assert np.array_equal(a, b)

    def test_non_softmax_output_warns_once(self, caplog):
        """Test the warning for an output layer the shortcut doesn't fit."""
        net = Network(seed=5)
        net.add_layer(2, 2, 'sigmoid')

        with caplog.at_level(logging.WARNING, logger='feedforward.network'):
            for _ in range(3):
                net.forward([0.5, 0.5])
                net.backward([1.0, 0.0])

        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1


@pytest.mark.unit
class TestNetworkUpdate:
    """Test batch updates."""

    def test_update_param_resets_layers(self, simple_network, batch):
        """Test that an update flushes every accumulator."""
        for x, y in batch:
            simple_network.forward(x)
            simple_network.backward(y)

        simple_network.update_param()

        for layer in simple_network.layers:
            assert layer.sample_count == 0
            assert np.all(layer.grad_accum == 0)

    def test_default_learning_rate(self, simple_network):
        """Test that update_param defaults to a step of 0.1."""
        simple_network.forward([0.1, 0.2, 0.3, 0.4])
        simple_network.backward([1.0, 0.0])
        last = simple_network.layers[-1]
        expected = last.weights - 0.1 * last.grad_accum

        simple_network.update_param()

        assert np.allclose(last.weights, expected)


@pytest.mark.integration
class TestNetworkTraining:
    """Integration tests for gradient descent."""

    def test_one_batch_update_does_not_increase_loss(self, simple_network, batch):
        """Test that one averaged update lowers (or keeps) the batch loss."""
        before = mean_loss(simple_network, batch)

        for x, y in batch:
            simple_network.forward(x)
            simple_network.backward(y)
        simple_network.update_param(0.01)

        after = mean_loss(simple_network, batch)
        assert after <= before

    def test_repeated_updates_learn_separable_data(self):
        """Test that the loss falls substantially on a trivial problem."""
        net = Network(seed=11)
        net.add_layer(2, 4, 'relu')
        net.add_layer(4, 2, 'softmax')
        samples = [
            (np.array([1.0, 0.0]), np.array([1.0, 0.0])),
            (np.array([0.0, 1.0]), np.array([0.0, 1.0])),
        ]

        before = mean_loss(net, samples)
        for _ in range(200):
            for x, y in samples:
                net.forward(x)
                net.backward(y)
            net.update_param(0.5)
        after = mean_loss(net, samples)

        assert after < before / 2
        assert net.predict([1.0, 0.0]) == 0
        assert net.predict([0.0, 1.0]) == 1
