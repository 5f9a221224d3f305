"""
mnist_loader.py
~~~~~~~~~~~~~~~

Loading of the MNIST handwritten digit dataset.

Two on-disk formats are supported:

- The original IDX files (``train-images-idx3-ubyte`` and friends), which
  store big-endian 32-bit headers followed by unsigned byte payloads.
- A compressed ``mnist.npz`` produced by ``scripts/convert_mnist_to_npz.py``,
  which loads considerably faster.

Pixels are scaled by 1/256 into [0, 1) and labels are turned into
10-element one-hot vectors, the form Network.forward/backward consume.
"""

import os
import logging
from typing import Iterator, Tuple

import numpy as np

from feedforward.exceptions import DatasetFormatError

# Configure module logger
logger = logging.getLogger(__name__)

LABEL_MAGIC = 0x00000801
IMAGE_MAGIC = 0x00000803
NUM_CLASSES = 10
PIXEL_SCALE = 256.0

TRAIN_IMAGES = 'train-images-idx3-ubyte'
TRAIN_LABELS = 'train-labels-idx1-ubyte'
TEST_IMAGES = 't10k-images-idx3-ubyte'
TEST_LABELS = 't10k-labels-idx1-ubyte'
NPZ_FILE = 'mnist.npz'


def _read_header(buffer: bytes, count: int, path: str) -> Tuple[int, ...]:
    """Decode `count` big-endian uint32 values from the start of buffer."""
    size = 4 * count
    if len(buffer) < size:
        raise DatasetFormatError(
            f"{path}: file too short for IDX header ({len(buffer)} bytes)"
        )
    return tuple(int(v) for v in np.frombuffer(buffer, dtype='>u4', count=count))


def _read_payload(buffer: bytes, offset: int, size: int, path: str) -> np.ndarray:
    available = len(buffer) - offset
    if available < size:
        raise DatasetFormatError(
            f"{path}: expected {size} bytes of data, found {available}"
        )
    return np.frombuffer(buffer, dtype=np.uint8, count=size, offset=offset).copy()


def read_idx_labels(path: str) -> np.ndarray:
    """
    Read an IDX1 label file.

    Args:
        path: Path to a ``*-labels-idx1-ubyte`` file

    Returns:
        1-D uint8 array of labels

    Raises:
        DatasetFormatError: If the magic number is wrong or data is missing
    """
    with open(path, 'rb') as f:
        buffer = f.read()

    magic, num_items = _read_header(buffer, 2, path)
    if magic != LABEL_MAGIC:
        raise DatasetFormatError(
            f"{path}: bad label file magic number {magic:#010x}, "
            f"expected {LABEL_MAGIC:#010x}"
        )

    labels = _read_payload(buffer, 8, num_items, path)
    logger.debug(f"Read {num_items} labels from {path}")
    return labels


def read_idx_images(path: str) -> np.ndarray:
    """
    Read an IDX3 image file.

    Args:
        path: Path to a ``*-images-idx3-ubyte`` file

    Returns:
        uint8 array of shape (num_images, rows, columns)

    Raises:
        DatasetFormatError: If the magic number is wrong or data is missing
    """
    with open(path, 'rb') as f:
        buffer = f.read()

    magic, num_images, rows, columns = _read_header(buffer, 4, path)
    if magic != IMAGE_MAGIC:
        raise DatasetFormatError(
            f"{path}: bad image file magic number {magic:#010x}, "
            f"expected {IMAGE_MAGIC:#010x}"
        )

    pixels = _read_payload(buffer, 16, num_images * rows * columns, path)
    logger.debug(f"Read {num_images} images of {rows}x{columns} from {path}")
    return pixels.reshape(num_images, rows, columns)


def one_hot(label: int, num_classes: int = NUM_CLASSES) -> np.ndarray:
    """Return a float vector with 1.0 at `label` and 0.0 elsewhere."""
    if not 0 <= label < num_classes:
        raise ValueError(f"Label {label} out of range for {num_classes} classes")
    vector = np.zeros(num_classes, dtype=np.float64)
    vector[label] = 1.0
    return vector


class MnistDataSet:
    """
    A set of labelled digit images held in memory as raw bytes.

    Iterating yields (image_vector, one_hot_label) pairs ready to be fed
    to a Network.
    """

    def __init__(self, images: np.ndarray, labels: np.ndarray):
        images = np.asarray(images, dtype=np.uint8)
        labels = np.asarray(labels, dtype=np.uint8)

        if images.ndim != 3:
            raise DatasetFormatError(
                f"Images must have shape (n, rows, columns), got {images.shape}"
            )
        if images.shape[0] != labels.shape[0]:
            raise DatasetFormatError(
                f"Image count {images.shape[0]} does not match "
                f"label count {labels.shape[0]}"
            )

        self.images = images
        self.labels = labels

    @classmethod
    def from_idx(cls, image_file: str, label_file: str) -> 'MnistDataSet':
        """Load a dataset from an IDX image file and an IDX label file."""
        return cls(read_idx_images(image_file), read_idx_labels(label_file))

    @property
    def num_images(self) -> int:
        return int(self.images.shape[0])

    @property
    def num_rows(self) -> int:
        return int(self.images.shape[1])

    @property
    def num_columns(self) -> int:
        return int(self.images.shape[2])

    @property
    def input_size(self) -> int:
        return self.num_rows * self.num_columns

    def label(self, i: int) -> int:
        return int(self.labels[i])

    def image(self, i: int) -> np.ndarray:
        return self.images[i]

    def image_vector(self, i: int) -> np.ndarray:
        """Flattened image with pixels scaled into [0, 1)."""
        return self.images[i].reshape(-1).astype(np.float64) / PIXEL_SCALE

    def label_one_hot(self, i: int) -> np.ndarray:
        return one_hot(self.label(i))

    def __len__(self) -> int:
        return self.num_images

    def __iter__(self) -> Iterator[Tuple[np.ndarray, np.ndarray]]:
        for i in range(self.num_images):
            yield self.image_vector(i), self.label_one_hot(i)

    def __repr__(self) -> str:
        return (
            f"MnistDataSet(num_images={self.num_images}, "
            f"rows={self.num_rows}, columns={self.num_columns})"
        )


def load_npz(path: str) -> Tuple[MnistDataSet, MnistDataSet]:
    """
    Load training and test sets from a converted ``mnist.npz`` file.

    Raises:
        DatasetFormatError: If an expected array is missing
    """
    with np.load(path) as data:
        missing = [
            key for key in ('train_images', 'train_labels', 'test_images', 'test_labels')
            if key not in data
        ]
        if missing:
            raise DatasetFormatError(f"{path}: missing arrays {missing}")

        training_set = MnistDataSet(data['train_images'], data['train_labels'])
        test_set = MnistDataSet(data['test_images'], data['test_labels'])

    return training_set, test_set


def load_data(data_dir: str = 'data') -> Tuple[MnistDataSet, MnistDataSet]:
    """
    Load the MNIST training and test sets.

    Prefers ``mnist.npz`` in data_dir and falls back to the four IDX files.

    Args:
        data_dir: Directory holding the dataset files

    Returns:
        tuple: (training_set, test_set)

    Raises:
        FileNotFoundError: If neither format is present
        DatasetFormatError: If a file is malformed
    """
    npz_path = os.path.join(data_dir, NPZ_FILE)
    if os.path.exists(npz_path):
        training_set, test_set = load_npz(npz_path)
        logger.info(f"Loaded MNIST from {npz_path}")
    else:
        paths = [os.path.join(data_dir, name)
                 for name in (TRAIN_IMAGES, TRAIN_LABELS, TEST_IMAGES, TEST_LABELS)]
        for path in paths:
            if not os.path.exists(path):
                raise FileNotFoundError(f"MNIST file not found: {path}")

        training_set = MnistDataSet.from_idx(paths[0], paths[1])
        test_set = MnistDataSet.from_idx(paths[2], paths[3])
        logger.info(f"Loaded MNIST IDX files from {data_dir}")

    logger.info(
        f"Data loaded: {len(training_set)} training, {len(test_set)} test"
    )
    return training_set, test_set
