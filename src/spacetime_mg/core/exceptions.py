"""Exception types raised by the space-time core."""


class SpaceTimeError(Exception):
    """Base class for all errors raised by the space-time solver."""


class OutOfRangeError(SpaceTimeError, IndexError):
    """A time slice index lies outside ``[0, T]``."""


class SizeMismatchError(SpaceTimeError, ValueError):
    """A vector has a different length than the slices of a store."""


class IncompatibleStoresError(SpaceTimeError, ValueError):
    """Two stores (or a store and a descriptor) disagree in ``N`` or ``T``."""


class CollaboratorError(SpaceTimeError, RuntimeError):
    """A spatial collaborator could not produce a result (e.g. a singular local solve)."""
