"""Core data structures: slice stores and space-time descriptors."""

from .slice_store import (
    TimeSliceStore, NormType, Ownership, SliceStorage, MemorySliceStorage, DiskSliceStorage
)
from .slice_io import save_store, load_store
from .discretization import SpaceTimeDescriptor, CouplingConstants, TimeContext

__all__ = [
    "TimeSliceStore",
    "NormType",
    "Ownership",
    "SliceStorage",
    "MemorySliceStorage",
    "DiskSliceStorage",
    "save_store",
    "load_store",
    "SpaceTimeDescriptor",
    "CouplingConstants",
    "TimeContext",
]
