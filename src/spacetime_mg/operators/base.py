"""Interfaces of the spatial collaborators used by the space-time operators."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Tuple, TYPE_CHECKING
import logging

import numpy as np
import scipy.sparse as sp

if TYPE_CHECKING:
    from ..core.discretization import TimeContext
    from .stencil import StencilWeights

logger = logging.getLogger(__name__)


class BoundaryKind(Enum):
    """Which kind of vector boundary conditions are implemented into."""
    DEFECT = "defect"
    SOLUTION = "solution"
    RHS = "rhs"


@dataclass(frozen=True)
class SliceLayout:
    """
    Named sub-ranges of a slice vector.

    Attributes:
        size: Length of a slice vector
        blocks: Mapping of block name to ``(start, stop)``
        primal: Names of the primal blocks
        dual: Names of the dual blocks
        constraints: Names of constraint (pressure-like) blocks among the
            primal and dual blocks
    """
    size: int
    blocks: Dict[str, Tuple[int, int]]
    primal: Tuple[str, ...]
    dual: Tuple[str, ...]
    constraints: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        for name in self.primal + self.dual:
            if name not in self.blocks:
                raise ValueError(f"Unknown block: {name}")
        for name in self.constraints:
            if name not in self.primal and name not in self.dual:
                raise ValueError(f"Constraint block {name} is neither primal nor dual")
        for name, (start, stop) in self.blocks.items():
            if not 0 <= start <= stop <= self.size:
                raise ValueError(f"Block {name} = [{start}, {stop}) outside slice of size {self.size}")

    def indices(self, names: Iterable[str]) -> np.ndarray:
        """Concatenated index array of the given blocks."""
        ranges = [np.arange(*self.blocks[name]) for name in names]
        if not ranges:
            return np.zeros(0, dtype=int)
        return np.concatenate(ranges)

    @property
    def primal_indices(self) -> np.ndarray:
        return self.indices(self.primal)

    @property
    def dual_indices(self) -> np.ndarray:
        return self.indices(self.dual)

    @property
    def primal_states(self) -> Tuple[str, ...]:
        return tuple(name for name in self.primal if name not in self.constraints)

    @property
    def dual_states(self) -> Tuple[str, ...]:
        return tuple(name for name in self.dual if name not in self.constraints)

    @property
    def primal_constraints(self) -> Tuple[str, ...]:
        return tuple(name for name in self.primal if name in self.constraints)

    @property
    def dual_constraints(self) -> Tuple[str, ...]:
        return tuple(name for name in self.dual if name in self.constraints)

    def clear(self, vector: np.ndarray, names: Iterable[str]) -> None:
        """Set the given blocks of ``vector`` to zero in place."""
        for name in names:
            start, stop = self.blocks[name]
            vector[start:stop] = 0.0

    def scale(self, vector: np.ndarray, names: Iterable[str], factor: float) -> None:
        """Multiply the given blocks of ``vector`` by ``factor`` in place."""
        for name in names:
            start, stop = self.blocks[name]
            vector[start:stop] *= factor


class SpatialPreconditioner(ABC):
    """Approximate inverse of one local diagonal block."""

    @abstractmethod
    def apply(
        self,
        weights: 'StencilWeights',
        residual: np.ndarray,
        evaluation: np.ndarray,
        context: 'TimeContext'
    ) -> np.ndarray:
        """
        Compute a correction for one slice.

        Args:
            weights: Weights of the diagonal block
            residual: Slice residual
            evaluation: Linearization point of the slice
            context: Time context of the slice

        Returns:
            Correction vector of the same length as ``residual``
        """
        pass


class SpatialLevel(ABC):
    """
    Spatial discretization consumed by the space-time operators.

    Implementations build the local block operator for a set of stencil
    weights, implement boundary conditions and deliver per-step forcing.
    """

    pure_neumann: bool = False

    def __init__(self, name: str):
        self.name = name

    @property
    @abstractmethod
    def layout(self) -> SliceLayout:
        """Layout of a slice vector on this level."""
        pass

    @abstractmethod
    def assemble_local_block(
        self,
        weights: 'StencilWeights',
        evaluation: np.ndarray,
        context: 'TimeContext'
    ) -> sp.csr_matrix:
        """Assemble the local block operator for ``weights``."""
        pass

    def apply_local_block(
        self,
        weights: 'StencilWeights',
        neighbour: np.ndarray,
        evaluation: np.ndarray,
        accumulator: np.ndarray,
        context: 'TimeContext',
        scale: float = 1.0
    ) -> None:
        """Add ``scale * A(weights) @ neighbour`` to ``accumulator`` in place."""
        matrix = self.assemble_local_block(weights, evaluation, context)
        accumulator += scale * (matrix @ neighbour)

    @abstractmethod
    def apply_boundary_conditions(
        self,
        vector: np.ndarray,
        context: 'TimeContext',
        kind: BoundaryKind
    ) -> None:
        """Implement boundary conditions into ``vector`` in place."""
        pass

    @abstractmethod
    def filter_matrix(self, matrix: sp.spmatrix, diagonal: bool) -> sp.csr_matrix:
        """
        Implement Dirichlet rows into a local block matrix.

        Args:
            matrix: Local block matrix
            diagonal: Whether the block sits on the diagonal (Dirichlet rows
                become identity rows) or off the diagonal (rows are cleared)

        Returns:
            Filtered matrix
        """
        pass

    @abstractmethod
    def forcing(self, context: 'TimeContext') -> np.ndarray:
        """Unweighted right-hand side of one time point (primal and dual blocks)."""
        pass

    def target(self, context: 'TimeContext') -> np.ndarray:
        """Desired primal state of one time point, laid out as a slice."""
        raise NotImplementedError(f"{self.name} provides no target state")

    def inner(self, u: np.ndarray, v: np.ndarray, names: Iterable[str]) -> float:
        """Discrete L2 inner product of two slices over the given blocks."""
        indices = self.layout.indices(names)
        return float(np.dot(u[indices], v[indices]))

    @abstractmethod
    def create_preconditioner(self, component: str = "full") -> SpatialPreconditioner:
        """
        Create a preconditioner for the diagonal block.

        Args:
            component: ``"full"``, ``"primal"`` or ``"dual"``
        """
        pass

    def __str__(self) -> str:
        return f"{self.name}(N={self.layout.size})"


class SpatialTransfer(ABC):
    """Grid transfer of single slices between a fine and a coarse spatial level."""

    def __init__(self, fine: SpatialLevel, coarse: SpatialLevel):
        self.fine = fine
        self.coarse = coarse

    @abstractmethod
    def restrict(self, vector: np.ndarray) -> np.ndarray:
        """Restrict a defect slice from the fine to the coarse level."""
        pass

    @abstractmethod
    def prolong(self, vector: np.ndarray) -> np.ndarray:
        """Prolongate a correction slice from the coarse to the fine level."""
        pass

    @abstractmethod
    def interpolate(self, vector: np.ndarray) -> np.ndarray:
        """Transfer a solution slice from the fine to the coarse level."""
        pass


class IdentityTransfer(SpatialTransfer):
    """Transfer between levels sharing the same spatial discretization."""

    def __init__(self, level: SpatialLevel):
        super().__init__(level, level)

    def restrict(self, vector: np.ndarray) -> np.ndarray:
        return vector.copy()

    def prolong(self, vector: np.ndarray) -> np.ndarray:
        return vector.copy()

    def interpolate(self, vector: np.ndarray) -> np.ndarray:
        return vector.copy()
