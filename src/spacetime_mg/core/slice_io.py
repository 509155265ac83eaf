"""Persisting a TimeSliceStore as a sequence of per-slice files."""

from pathlib import Path
from typing import Optional, Union
import logging

import numpy as np

from .slice_store import TimeSliceStore

logger = logging.getLogger(__name__)

DEFAULT_PATTERN = "slice.{index:05d}.npy"


def slice_path(directory: Union[str, Path], index: int, pattern: str = DEFAULT_PATTERN) -> Path:
    """File name of slice ``index`` inside ``directory``."""
    return Path(directory) / pattern.format(index=index)


def save_store(
    store: TimeSliceStore,
    directory: Union[str, Path],
    pattern: str = DEFAULT_PATTERN
) -> None:
    """
    Write every slice of ``store`` into its own file.

    Args:
        store: Store to save
        directory: Target directory (created if missing)
        pattern: File name pattern with an ``{index}`` field
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    for index in range(store.num_slices):
        np.save(slice_path(directory, index, pattern), store.get(index))

    logger.info(f"Saved {store.num_slices} slices to {directory}")


def load_store(
    directory: Union[str, Path],
    steps: int,
    size: Optional[int] = None,
    pattern: str = DEFAULT_PATTERN
) -> TimeSliceStore:
    """
    Restore a store from a file sequence.

    A missing file is not an error: the slice stays zero and a warning is
    logged, so partially written checkpoints can still be restored.

    Args:
        directory: Directory holding the slice files
        steps: Number of time steps ``T``
        size: Slice length; inferred from the first existing file if omitted
        pattern: File name pattern with an ``{index}`` field

    Returns:
        The restored store
    """
    directory = Path(directory)
    paths = [slice_path(directory, index, pattern) for index in range(steps + 1)]

    if size is None:
        existing = [path for path in paths if path.exists()]
        if not existing:
            raise FileNotFoundError(f"No slice files found in {directory}")
        size = int(np.load(existing[0]).shape[0])

    store = TimeSliceStore(size, steps)
    for index, path in enumerate(paths):
        if not path.exists():
            logger.warning(f"Slice file {path} missing, assuming zero")
            continue
        store.set(index, np.load(path))

    logger.info(f"Loaded {steps + 1} slices from {directory}")
    return store
