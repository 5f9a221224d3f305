#!/usr/bin/env python3
"""
Convert the MNIST IDX files to a single compressed NPZ file.

Reading the four big-endian IDX files on every start is slower than
loading one NPZ archive, which feedforward.mnist_loader.load_data prefers
when it is present.

Usage:
    python scripts/convert_mnist_to_npz.py [data_dir]

The script will:
1. Load the IDX training and test files from data_dir (default: data/)
2. Save them as data_dir/mnist.npz
3. Verify the conversion was successful
"""

import os
import sys
from typing import Tuple

import numpy as np

from feedforward.mnist_loader import (
    MnistDataSet,
    NPZ_FILE,
    TEST_IMAGES,
    TEST_LABELS,
    TRAIN_IMAGES,
    TRAIN_LABELS,
)


def load_idx_sets(data_dir: str) -> Tuple[MnistDataSet, MnistDataSet]:
    """
    Load MNIST data from the IDX files.

    Parameters:
    -----------
    data_dir : str
        Directory containing the four IDX files

    Returns:
    --------
    tuple
        (training_set, test_set)
    """
    print(f"📂 Loading IDX files from: {data_dir}")

    training_set = MnistDataSet.from_idx(
        os.path.join(data_dir, TRAIN_IMAGES),
        os.path.join(data_dir, TRAIN_LABELS)
    )
    test_set = MnistDataSet.from_idx(
        os.path.join(data_dir, TEST_IMAGES),
        os.path.join(data_dir, TEST_LABELS)
    )

    print(f"✅ Loaded successfully:")
    print(f"   - Training: {len(training_set)} images")
    print(f"   - Test: {len(test_set)} images")

    return training_set, test_set


def save_as_npz(data: Tuple[MnistDataSet, MnistDataSet], filepath: str) -> None:
    """
    Save MNIST data in NPZ format.

    Parameters:
    -----------
    data : tuple
        (training_set, test_set)
    filepath : str
        Output path for the .npz file
    """
    print(f"\n💾 Converting to NPZ format: {filepath}")

    training_set, test_set = data

    np.savez_compressed(
        filepath,
        train_images=training_set.images,
        train_labels=training_set.labels,
        test_images=test_set.images,
        test_labels=test_set.labels
    )

    npz_size = os.path.getsize(filepath) / (1024 * 1024)  # MB
    print(f"✅ Saved successfully (size: {npz_size:.2f} MB)")


def verify_conversion(npz_filepath: str, original_data: Tuple[MnistDataSet, MnistDataSet]) -> bool:
    """
    Verify that the NPZ file contains the same data as the IDX files.

    Returns:
    --------
    bool
        True if verification passes
    """
    print(f"\n🔍 Verifying conversion...")

    training_set, test_set = original_data

    with np.load(npz_filepath) as data:
        checks = [
            ('train_images', training_set.images),
            ('train_labels', training_set.labels),
            ('test_images', test_set.images),
            ('test_labels', test_set.labels),
        ]
        for key, expected in checks:
            if not np.array_equal(data[key], expected):
                print(f"❌ {key} doesn't match!")
                return False

    print("✅ Verification passed! Data is identical.")
    return True


def main():
    """Main conversion function."""
    print("=" * 60)
    print("MNIST Data Format Converter")
    print("IDX files → NPZ archive")
    print("=" * 60)

    if len(sys.argv) > 1:
        data_dir = sys.argv[1]
    else:
        script_dir = os.path.dirname(os.path.abspath(__file__))
        data_dir = os.path.join(os.path.dirname(script_dir), 'data')

    npz_path = os.path.join(data_dir, NPZ_FILE)

    missing = [
        name for name in (TRAIN_IMAGES, TRAIN_LABELS, TEST_IMAGES, TEST_LABELS)
        if not os.path.exists(os.path.join(data_dir, name))
    ]
    if missing:
        print(f"❌ Error: IDX files not found in {data_dir}: {', '.join(missing)}")
        sys.exit(1)

    if os.path.exists(npz_path):
        response = input(f"\n⚠️  {npz_path} already exists. Overwrite? (y/N): ")
        if response.lower() != 'y':
            print("❌ Conversion cancelled.")
            sys.exit(0)

    try:
        original_data = load_idx_sets(data_dir)
        save_as_npz(original_data, npz_path)
        if not verify_conversion(npz_path, original_data):
            sys.exit(1)

        print("\n" + "=" * 60)
        print("✅ CONVERSION COMPLETE!")
        print("=" * 60)
        print(f"\n📁 New NPZ file: {npz_path}")
        print(f"   The IDX files can be kept or removed; load_data() prefers the NPZ.")

    except Exception as e:
        print(f"\n❌ Error during conversion: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
