"""
test_trainer.py
~~~~~~~~~~~~~~~

Tests for the epoch loop, batch boundaries and learning-rate decay.
"""

import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from feedforward import trainer
from feedforward.classify_mnist import build_network, main
from feedforward.network import Network
from feedforward.trainer import EpochResult, evaluate, run_epoch, train


@pytest.fixture
def simple_network():
    net = Network(seed=21)
    net.add_layer(2, 4, 'relu')
    net.add_layer(4, 2, 'softmax')
    return net


@pytest.fixture
def training_data():
    """Seven linearly separable samples."""
    data = []
    for i in range(7):
        label = i % 2
        x = np.array([1.0, 0.0]) if label == 0 else np.array([0.0, 1.0])
        y = np.zeros(2)
        y[label] = 1.0
        data.append((x, y))
    return data


@pytest.mark.unit
class TestRunEpoch:
    """Test a single pass over the data."""

    def test_batch_boundaries(self, simple_network, training_data, monkeypatch):
        """Test one update per full batch plus one for the remainder."""
        batches = []
        original = simple_network.update_param

        def record(learning_rate=0.1):
            batches.append(simple_network.layers[0].sample_count)
            original(learning_rate)

        monkeypatch.setattr(simple_network, 'update_param', record)

        run_epoch(simple_network, training_data, train=True, batch_size=3)

        assert batches == [3, 3, 1]

    def test_evaluation_does_not_change_weights(self, simple_network, training_data):
        """Test that train=False leaves the network untouched."""
        before = [w.copy() for w in simple_network.weights]
        result = evaluate(simple_network, training_data)
        for b, w in zip(before, simple_network.weights):
            assert np.array_equal(b, w)
        assert result.total == 7
        assert all(layer.sample_count == 0 for layer in simple_network.layers)

    def test_statistics(self, simple_network, training_data):
        """Test mean loss and error rate bookkeeping."""
        result = run_epoch(simple_network, training_data, train=False)

        expected_loss = 0.0
        correct = 0
        for x, y in training_data:
            out = simple_network.forward(x)
            expected_loss += simple_network.calc_loss(y)
            correct += int(np.argmax(out) == np.argmax(y))

        assert np.isclose(result.mean_loss, expected_loss / 7)
        assert result.correct == correct
        assert np.isclose(result.error_rate, (7 - correct) / 7)
        assert np.isclose(result.accuracy, correct / 7)

    def test_empty_dataset(self, simple_network):
        assert run_epoch(simple_network, [], train=True) == EpochResult(0.0, 0.0, 0, 0)

    def test_yield_func_called_per_sample(self, simple_network, training_data):
        calls = []
        run_epoch(simple_network, training_data, train=False,
                  yield_func=lambda: calls.append(1))
        assert len(calls) == 7

    def test_invalid_batch_size(self, simple_network, training_data):
        with pytest.raises(ValueError):
            run_epoch(simple_network, training_data, train=True, batch_size=0)


@pytest.mark.unit
class TestTrain:
    """Test the multi-epoch driver."""

    def test_learning_rate_decays_when_loss_rises(self, simple_network, monkeypatch):
        """Test that the rate halves after an epoch with higher loss."""
        losses = iter([1.0, 2.0, 1.5, 1.4])
        seen_rates = []

        def fake_run_epoch(network, dataset, train, learning_rate=0.1,
                           batch_size=100, yield_func=None):
            seen_rates.append(learning_rate)
            return EpochResult(next(losses), 0.5, 1, 2)

        monkeypatch.setattr(trainer, 'run_epoch', fake_run_epoch)

        history = train(simple_network, [], epochs=4, learning_rate=0.2)

        assert seen_rates == [0.2, 0.2, 0.1, 0.1]
        assert [h['learning_rate'] for h in history] == [0.2, 0.2, 0.1, 0.1]

    def test_callback_receives_epoch_stats(self, simple_network, training_data):
        """Test the per-epoch callback payload."""
        received = []
        train(simple_network, training_data, epochs=2, learning_rate=0.1,
              batch_size=2, test_data=training_data, callback=received.append)

        assert [r['epoch'] for r in received] == [1, 2]
        for stats in received:
            assert stats['total_epochs'] == 2
            assert stats['total'] == 7
            assert 0.0 <= stats['accuracy'] <= 1.0
            assert stats['test_loss'] is not None
            assert stats['elapsed_time'] >= 0

    @pytest.mark.parametrize('kwargs', [
        {'epochs': 0},
        {'epochs': 1, 'learning_rate': 0.0},
        {'epochs': 1, 'decay': 1.5},
    ])
    def test_invalid_arguments(self, simple_network, training_data, kwargs):
        with pytest.raises(ValueError):
            train(simple_network, training_data, **kwargs)

    @pytest.mark.integration
    def test_training_reduces_loss(self, simple_network, training_data):
        """Test that several epochs improve a separable problem."""
        history = train(simple_network, training_data, epochs=30,
                        learning_rate=0.5, batch_size=2)
        assert history[-1]['train_loss'] < history[0]['train_loss']
        assert history[-1]['accuracy'] == 1.0


@pytest.mark.integration
class TestCommandLine:
    """Test the feedforward-classify entry point."""

    def test_build_network(self):
        net = build_network(16, 8, 'swish', seed=1)
        assert net.layer_sizes == [16, 8, 10]
        assert net.layers[-1].activation.value == 'softmax'

    def test_main_trains_from_npz(self, tmp_path):
        """Test a full run on a tiny synthetic dataset."""
        rng = np.random.default_rng(0)
        images = rng.integers(0, 256, size=(12, 4, 4), dtype=np.uint8)
        labels = rng.integers(0, 10, size=12, dtype=np.uint8)
        np.savez_compressed(
            tmp_path / 'mnist.npz',
            train_images=images,
            train_labels=labels,
            test_images=images[:4],
            test_labels=labels[:4]
        )

        exit_code = main([
            '--data-dir', str(tmp_path), '--epochs', '2', '--hidden', '5',
            '--batch-size', '4', '--seed', '3'
        ])

        assert exit_code == 0

    def test_main_reports_missing_data(self, tmp_path):
        assert main(['--data-dir', str(tmp_path / 'nowhere'), '--epochs', '1']) == 1

    @pytest.mark.parametrize('flag', ['--epochs', '--batch-size', '--hidden', '--learning-rate'])
    def test_main_rejects_non_positive_arguments(self, tmp_path, flag, capsys):
        """Test that zero values are reported as usage errors."""
        with pytest.raises(SystemExit) as exc:
            main(['--data-dir', str(tmp_path), flag, '0'])

        assert exc.value.code == 2
        assert 'must be a positive' in capsys.readouterr().err
