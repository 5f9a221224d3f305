"""
exceptions.py
~~~~~~~~~~~~~

Error types raised by the network core and the dataset loader.

Numeric edge cases (overflowing exponentials, log of zero) are not
represented here: they are clamped where they occur so a long training
run never aborts on them.
"""


class NetworkError(Exception):
    """Base class for all errors raised by this package."""


class ArchitectureMismatch(NetworkError, ValueError):
    """
    Raised when vector or layer dimensions disagree.

    Covers adjacent layers whose sizes don't chain, as well as inputs and
    targets whose length doesn't match the layer they are fed to.
    """


class PreconditionViolation(NetworkError, RuntimeError):
    """
    Raised when an operation runs before the state it depends on exists.

    For example, computing a delta on a layer that has never run forward,
    or running a network that has no layers.
    """


class DatasetFormatError(NetworkError, ValueError):
    """Raised when an MNIST IDX or NPZ file cannot be decoded."""
