"""
classify_mnist.py
~~~~~~~~~~~~~~~~~

Command line entry point: train a digit classifier on MNIST.

Usage:
    feedforward-classify --data-dir data --epochs 50 --hidden 300

The network is ``784 -> hidden -> 10`` with a softmax output layer.
"""

import sys
import logging
import argparse
from typing import List, Optional

from feedforward import config
from feedforward.activations import ActivationKind
from feedforward.exceptions import DatasetFormatError
from feedforward.mnist_loader import NUM_CLASSES, load_data
from feedforward.network import Network
from feedforward.trainer import train

logger = logging.getLogger(__name__)


def positive_int(value: str) -> int:
    """argparse type accepting integers greater than zero."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: '{value}'") from None
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {number}")
    return number


def positive_float(value: str) -> float:
    """argparse type accepting floats greater than zero."""
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid float value: '{value}'") from None
    if not number > 0:
        raise argparse.ArgumentTypeError(f"must be a positive number, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Train a fully-connected network on MNIST.'
    )
    parser.add_argument('--data-dir', default=config.get_mnist_dir(),
                        help='directory with mnist.npz or the IDX files')
    parser.add_argument('--epochs', type=positive_int, default=50)
    parser.add_argument('--hidden', type=positive_int, default=300,
                        help='number of hidden units')
    parser.add_argument('--activation', default='relu',
                        choices=[kind.value for kind in ActivationKind
                                 if kind is not ActivationKind.SOFTMAX],
                        help='hidden layer activation')
    parser.add_argument('--learning-rate', type=positive_float, default=0.2)
    parser.add_argument('--batch-size', type=positive_int, default=100)
    parser.add_argument('--seed', type=int, default=None,
                        help='seed for weight initialization')
    parser.add_argument('--verbose', action='store_true',
                        help='log per-layer deltas during backpropagation')
    parser.add_argument('--log-level', default=None)
    return parser


def build_network(
    input_size: int,
    hidden: int,
    activation: str,
    seed: Optional[int] = None,
    verbose: bool = False
) -> Network:
    """Create the input -> hidden -> softmax classifier."""
    net = Network(verbose=verbose, seed=seed)
    net.add_layer(input_size, hidden, activation)
    net.add_layer(hidden, NUM_CLASSES, ActivationKind.SOFTMAX)
    return net


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config.configure_logging(args.log_level)

    try:
        training_set, test_set = load_data(args.data_dir)
    except (FileNotFoundError, DatasetFormatError) as e:
        logger.error(f"Could not load MNIST data: {e}")
        return 1

    net = build_network(
        training_set.input_size, args.hidden, args.activation,
        seed=args.seed, verbose=args.verbose
    )
    logger.info(f"Training network {net.layer_sizes}")

    history = train(
        net,
        training_set,
        epochs=args.epochs,
        learning_rate=args.learning_rate,
        batch_size=args.batch_size,
        test_data=test_set
    )

    final = history[-1]
    logger.info(
        f"Finished {final['epoch']} epoch(s): test accuracy {final['accuracy']:.2%}"
    )
    return 0


if __name__ == '__main__':
    sys.exit(main())
