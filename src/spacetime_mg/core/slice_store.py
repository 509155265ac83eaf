"""Storage of one state vector per discrete time point."""

from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Union
import logging

import numpy as np

from .exceptions import OutOfRangeError, SizeMismatchError, IncompatibleStoresError

logger = logging.getLogger(__name__)


class Ownership(Enum):
    """Whether a store owns its slice storage or shares another store's."""
    OWNED = "owned"
    VIEW = "view"


class NormType(Enum):
    """Aggregate norms over all slices of a store."""
    L1 = "l1"
    L2 = "l2"
    LINF = "linf"


class SliceStorage(ABC):
    """Backend holding the raw data of materialized slices."""

    @abstractmethod
    def read(self, index: int) -> np.ndarray:
        """Return the stored data of slice ``index``."""
        pass

    @abstractmethod
    def write(self, index: int, data: np.ndarray) -> None:
        """Store ``data`` as slice ``index``."""
        pass

    @abstractmethod
    def release(self) -> None:
        """Free all stored slices."""
        pass


class MemorySliceStorage(SliceStorage):
    """Keeps every materialized slice as a numpy array in memory."""

    def __init__(self):
        self._slices: Dict[int, np.ndarray] = {}

    def read(self, index: int) -> np.ndarray:
        return self._slices[index]

    def write(self, index: int, data: np.ndarray) -> None:
        self._slices[index] = np.array(data, dtype=np.float64, copy=True)

    def release(self) -> None:
        self._slices.clear()


class DiskSliceStorage(SliceStorage):
    """
    Spills every slice to its own ``.npy`` file.

    Reads and writes go straight to disk, so only the slices currently being
    processed are held in memory.
    """

    def __init__(self, directory: Union[str, Path], prefix: str = "spill"):
        """
        Initialize disk storage.

        Args:
            directory: Directory receiving the slice files (created if missing)
            prefix: File name prefix
        """
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix
        self._written = set()

    def _path(self, index: int) -> Path:
        return self.directory / f"{self.prefix}.{index:05d}.npy"

    def read(self, index: int) -> np.ndarray:
        return np.load(self._path(index))

    def write(self, index: int, data: np.ndarray) -> None:
        np.save(self._path(index), np.asarray(data, dtype=np.float64))
        self._written.add(index)

    def release(self) -> None:
        """Delete the files written by this storage, other files stay untouched."""
        for index in sorted(self._written):
            path = self._path(index)
            if path.exists():
                path.unlink()
        self._written.clear()
        logger.debug(f"Released disk slices in {self.directory}")


class TimeSliceStore:
    """
    Sequence of ``T+1`` vectors of length ``N``, one per time point.

    Every slice carries a scale factor. A slice with scale 0 is the exact zero
    vector and its storage is never read, which makes ``clear`` and
    ``scale_by`` pure metadata updates.
    """

    def __init__(self, size: int, steps: int, storage: Optional[SliceStorage] = None):
        """
        Create a store with all slices zero.

        Args:
            size: Length ``N`` of each slice vector
            steps: Number of time steps ``T``; slices are indexed ``0..T``
            storage: Storage backend, in-memory by default
        """
        if size < 1:
            raise ValueError(f"Slice size must be positive, got {size}")
        if steps < 0:
            raise ValueError(f"Number of time steps must be non-negative, got {steps}")

        self.size = size
        self.steps = steps
        self.storage = storage if storage is not None else MemorySliceStorage()
        self.scales = np.zeros(steps + 1, dtype=np.float64)
        self.ownership = Ownership.OWNED

    @property
    def num_slices(self) -> int:
        """Number of slices, ``T+1``."""
        return self.steps + 1

    def _check_index(self, index: int) -> None:
        if not 0 <= index <= self.steps:
            raise OutOfRangeError(f"Slice index {index} outside [0, {self.steps}]")

    def check_compatible(self, other: 'TimeSliceStore') -> None:
        """Raise IncompatibleStoresError unless ``other`` has the same N and T."""
        if self.size != other.size or self.steps != other.steps:
            raise IncompatibleStoresError(
                f"Store ({self.size}, {self.steps}) incompatible with "
                f"({other.size}, {other.steps})"
            )

    def is_zero(self, index: int) -> bool:
        """True if slice ``index`` is the zero shortcut."""
        self._check_index(index)
        return self.scales[index] == 0.0

    def get(self, index: int) -> np.ndarray:
        """Return a copy of slice ``index``, scaled by its scale factor."""
        self._check_index(index)
        scale = self.scales[index]
        if scale == 0.0:
            return np.zeros(self.size, dtype=np.float64)
        data = np.array(self.storage.read(index), dtype=np.float64, copy=True)
        if scale != 1.0:
            data *= scale
        return data

    def set(self, index: int, vector: np.ndarray) -> None:
        """Copy ``vector`` into slice ``index`` and mark it materialized."""
        self._check_index(index)
        vector = np.asarray(vector)
        if vector.shape != (self.size,):
            raise SizeMismatchError(
                f"Vector of shape {vector.shape} does not fit slice size {self.size}"
            )
        self.storage.write(index, vector)
        self.scales[index] = 1.0

    def clear(self) -> None:
        """Turn every slice into the zero vector."""
        self.scales[:] = 0.0

    def scale_by(self, factor: float) -> None:
        """Multiply every slice by ``factor``."""
        self.scales *= factor

    def set_constant(self, value: float) -> None:
        """Fill every entry of every slice with ``value``."""
        filled = np.full(self.size, value, dtype=np.float64)
        for index in range(self.num_slices):
            self.set(index, filled)

    def axpy(self, x: 'TimeSliceStore', cx: float, cy: float = 1.0) -> None:
        """In place ``self <- cx*x + cy*self``."""
        self.check_compatible(x)
        for index in range(self.num_slices):
            result = cx * x.get(index)
            if cy != 0.0:
                result += cy * self.get(index)
            self.set(index, result)

    def copy_from(self, source: 'TimeSliceStore') -> None:
        """Overwrite this store with the contents of ``source``."""
        self.check_compatible(source)
        if source is self:
            return
        for index in range(self.num_slices):
            if source.is_zero(index):
                self.scales[index] = 0.0
            else:
                self.set(index, source.get(index))

    def copy(self) -> 'TimeSliceStore':
        """Deep copy into a new in-memory store, keeping zero slices unmaterialized."""
        duplicate = TimeSliceStore(self.size, self.steps)
        duplicate.copy_from(self)
        return duplicate

    def view(self) -> 'TimeSliceStore':
        """Create a view sharing this store's storage and scale factors."""
        shared = TimeSliceStore.__new__(TimeSliceStore)
        shared.size = self.size
        shared.steps = self.steps
        shared.storage = self.storage
        shared.scales = self.scales
        shared.ownership = Ownership.VIEW
        return shared

    def release(self) -> None:
        """Release the storage; a view leaves the shared storage untouched."""
        if self.ownership is Ownership.VIEW:
            logger.debug("Released view without touching shared storage")
            return
        self.storage.release()
        self.scales[:] = 0.0

    def scalar_product(self, other: 'TimeSliceStore') -> float:
        """Sum of the slice-wise dot products."""
        self.check_compatible(other)
        total = 0.0
        for index in range(self.num_slices):
            if self.is_zero(index) or other.is_zero(index):
                continue
            total += float(np.dot(self.get(index), other.get(index)))
        return total

    def norm(self, kind: NormType = NormType.L2) -> float:
        """
        Aggregate norm over all slices.

        The L1 and L2 variants are averaged over the ``T+1`` slices so the value
        does not grow under time refinement.

        Args:
            kind: Norm type

        Returns:
            Norm value
        """
        slice_norms = []
        for index in range(self.num_slices):
            if self.is_zero(index):
                continue
            data = self.get(index)
            if kind is NormType.L1:
                slice_norms.append(np.sum(np.abs(data)))
            elif kind is NormType.L2:
                slice_norms.append(np.dot(data, data))
            elif kind is NormType.LINF:
                slice_norms.append(np.max(np.abs(data)))
            else:
                raise ValueError(f"Unknown norm type: {kind}")

        if not slice_norms:
            return 0.0
        if kind is NormType.L1:
            return float(np.sum(slice_norms) / self.num_slices)
        if kind is NormType.L2:
            return float(np.sqrt(np.sum(slice_norms) / self.num_slices))
        return float(np.max(slice_norms))

    def to_dense(self) -> np.ndarray:
        """Concatenate all slices into one vector of length ``N*(T+1)``."""
        dense = np.zeros(self.size * self.num_slices, dtype=np.float64)
        for index in range(self.num_slices):
            if not self.is_zero(index):
                dense[index * self.size:(index + 1) * self.size] = self.get(index)
        return dense

    def from_dense(self, dense: np.ndarray) -> None:
        """Split a vector of length ``N*(T+1)`` into the slices of this store."""
        dense = np.asarray(dense)
        if dense.shape != (self.size * self.num_slices,):
            raise SizeMismatchError(
                f"Dense vector of shape {dense.shape} does not match "
                f"{self.num_slices} slices of size {self.size}"
            )
        for index in range(self.num_slices):
            self.set(index, dense[index * self.size:(index + 1) * self.size])

    def __len__(self) -> int:
        return self.num_slices

    def __repr__(self) -> str:
        materialized = int(np.count_nonzero(self.scales))
        return (f"TimeSliceStore(size={self.size}, steps={self.steps}, "
                f"materialized={materialized}, ownership={self.ownership.value})")
