"""
trainer.py
~~~~~~~~~~

Epoch loop for training a Network one sample at a time.

Each sample runs forward, loss and backward; weights are updated once per
mini-batch. Between epochs the learning rate is decayed whenever the
training loss got worse than in the previous epoch.
"""

import time
import logging
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from feedforward.network import Network

logger = logging.getLogger(__name__)

Sample = Tuple[Sequence[float], Sequence[float]]


class EpochResult(NamedTuple):
    """Aggregate statistics of one pass over a dataset."""

    mean_loss: float
    error_rate: float
    correct: int
    total: int

    @property
    def accuracy(self) -> float:
        return self.correct / self.total if self.total else 0.0


def run_epoch(
    network: Network,
    dataset: Iterable[Sample],
    train: bool,
    learning_rate: float = 0.1,
    batch_size: int = 100,
    yield_func: Optional[Callable[[], None]] = None
) -> EpochResult:
    """
    Run every sample of dataset through the network once.

    Args:
        network: The network to evaluate or train
        dataset: Iterable of (input_vector, one_hot_target) pairs
        train: Whether to backpropagate and update weights
        learning_rate: Step size for each batch update
        batch_size: Number of samples per weight update
        yield_func: Called after every sample, e.g. to let other
            cooperative tasks run

    Returns:
        EpochResult with mean loss and error rate over the dataset
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be a positive integer, got {batch_size}")

    num_correct = 0
    total = 0
    sum_loss = 0.0
    batch_loss = 0.0
    batch_samples = 0
    batch_id = 0

    for x, target in dataset:
        output = network.forward(x)
        if int(np.argmax(output)) == int(np.argmax(target)):
            num_correct += 1
        total += 1

        sample_loss = network.calc_loss(target)
        sum_loss += sample_loss

        if train:
            network.backward(target)
            batch_loss += sample_loss
            batch_samples += 1
            if batch_samples == batch_size:
                _flush_batch(network, learning_rate, batch_id, batch_loss, batch_samples)
                batch_id += 1
                batch_loss = 0.0
                batch_samples = 0

        if yield_func is not None:
            yield_func()

    # Trailing partial batch
    if train and batch_samples:
        _flush_batch(network, learning_rate, batch_id, batch_loss, batch_samples)

    if total == 0:
        return EpochResult(0.0, 0.0, 0, 0)

    return EpochResult(
        mean_loss=sum_loss / total,
        error_rate=(total - num_correct) / total,
        correct=num_correct,
        total=total
    )


def _flush_batch(
    network: Network,
    learning_rate: float,
    batch_id: int,
    batch_loss: float,
    batch_samples: int
) -> None:
    logger.debug(f"batch loss[{batch_id}]: {batch_loss / batch_samples:.4f}")
    network.update_param(learning_rate)


def evaluate(network: Network, dataset: Iterable[Sample]) -> EpochResult:
    """Measure loss and error rate without changing the network."""
    return run_epoch(network, dataset, train=False)


def train(
    network: Network,
    training_data: Iterable[Sample],
    epochs: int,
    learning_rate: float = 0.2,
    batch_size: int = 100,
    test_data: Optional[Iterable[Sample]] = None,
    decay: float = 0.5,
    callback: Optional[Callable[[Dict[str, Any]], None]] = None,
    yield_func: Optional[Callable[[], None]] = None
) -> List[Dict[str, Any]]:
    """
    Train the network for a number of epochs.

    After each epoch the network is evaluated on test_data (if given). If
    the mean training loss is higher than the previous epoch's, the
    learning rate is multiplied by decay.

    Args:
        network: Network to train in place
        training_data: Iterable of (input, one_hot_target) pairs; must be
            re-iterable (a list or an MnistDataSet)
        epochs: Number of passes over training_data
        learning_rate: Initial step size
        batch_size: Samples per weight update
        test_data: Optional held-out data evaluated after each epoch
        decay: Factor applied to the learning rate when loss increases
        callback: Called with a dict of epoch statistics after each epoch
        yield_func: Passed through to run_epoch

    Returns:
        List of per-epoch statistics dictionaries
    """
    if not isinstance(epochs, int) or epochs < 1:
        raise ValueError(f"epochs must be a positive integer, got {epochs}")
    if learning_rate <= 0:
        raise ValueError(f"learning_rate must be positive, got {learning_rate}")
    if not 0 < decay <= 1:
        raise ValueError(f"decay must be in (0, 1], got {decay}")

    history = []
    prev_loss = float('inf')
    start_time = time.time()

    for epoch in range(epochs):
        logger.info(f"Running epoch {epoch + 1}/{epochs} (learning rate {learning_rate:g})")
        train_result = run_epoch(
            network, training_data, train=True,
            learning_rate=learning_rate, batch_size=batch_size,
            yield_func=yield_func
        )
        logger.info(
            f"Train set mean loss: {train_result.mean_loss:.4f}, "
            f"error rate: {train_result.error_rate:.4f}"
        )

        stats: Dict[str, Any] = {
            'epoch': epoch + 1,
            'total_epochs': epochs,
            'train_loss': train_result.mean_loss,
            'train_error': train_result.error_rate,
            'learning_rate': learning_rate,
        }

        if test_data is not None:
            test_result = run_epoch(network, test_data, train=False, yield_func=yield_func)
            logger.info(
                f"Test set mean loss: {test_result.mean_loss:.4f}, "
                f"error rate: {test_result.error_rate:.4f}"
            )
            evaluated = test_result
            stats['test_loss'] = test_result.mean_loss
            stats['test_error'] = test_result.error_rate
        else:
            evaluated = train_result
            stats['test_loss'] = None
            stats['test_error'] = None

        stats['accuracy'] = evaluated.accuracy
        stats['correct'] = evaluated.correct
        stats['total'] = evaluated.total
        stats['elapsed_time'] = time.time() - start_time
        history.append(stats)

        if callback is not None:
            callback(stats)

        if prev_loss < train_result.mean_loss:
            learning_rate *= decay
            logger.info(
                f"Mean loss {train_result.mean_loss:.4f} is worse than previous "
                f"{prev_loss:.4f}: decaying learning rate to {learning_rate:g}"
            )
        prev_loss = train_result.mean_loss

    return history
