"""Configuration classes for space-time solver runs."""

import json
import yaml
from dataclasses import dataclass, asdict
from typing import Dict, Any, Optional, Union
from pathlib import Path
import logging

from ..core.discretization import CouplingConstants
from ..utils.logging_utils import setup_logging as configure_logging

logger = logging.getLogger(__name__)

PRECONDITIONER_TYPES = ["jacobi", "forward_backward_gs"]
COARSE_SOLVER_TYPES = ["defect_correction", "bicgstab", "direct"]


@dataclass
class TimeConfig:
    """Time grid of the coarsest level and time stepping scheme."""
    coarse_steps: int = 4
    t0: float = 0.0
    t_max: float = 1.0
    theta: float = 1.0

    def validate(self) -> None:
        """Validate time configuration."""
        if self.coarse_steps < 1:
            raise ValueError("Need at least one time step")

        if self.t_max <= self.t0:
            raise ValueError("Invalid time interval")

        if not 0.0 <= self.theta <= 1.0:
            raise ValueError(f"Theta must lie in [0, 1], got {self.theta}")


@dataclass
class ControlConfig:
    """Parameters of the optimal control problem."""
    alpha: float = 1.0
    gamma: float = 0.0
    nonlinear: bool = False
    primal_dual_coupling: float = 1.0
    dual_primal_coupling: float = 1.0
    terminal_coupling: float = 1.0

    def validate(self) -> None:
        """Validate control configuration."""
        if self.alpha == 0.0:
            raise ValueError("Control cost weight alpha must be nonzero")

        if self.gamma < 0.0:
            raise ValueError("Terminal cost weight gamma must be non-negative")

    def coupling(self) -> CouplingConstants:
        return CouplingConstants(
            primal_dual=self.primal_dual_coupling,
            dual_primal=self.dual_primal_coupling,
            terminal=self.terminal_coupling,
        )


@dataclass
class SpaceConfig:
    """Spatial grid of the reference problem."""
    coarse_nodes: int = 9
    refine_space: bool = False
    viscosity: float = 1.0

    def validate(self) -> None:
        """Validate space configuration."""
        if self.coarse_nodes < 3:
            raise ValueError("Grid must have at least 3 nodes")

        if self.viscosity <= 0:
            raise ValueError("Viscosity must be positive")


@dataclass
class MultigridSettings:
    """Configuration of the space-time multigrid."""
    levels: int = 1
    cycle: str = "V"
    pre_smooth: bool = True
    post_smooth: bool = True
    iterations: int = 1
    restriction: str = "full_weighting"
    prolongation: str = "linear"

    def validate(self) -> None:
        """Validate multigrid configuration."""
        if self.levels < 1:
            raise ValueError("Must have at least 1 level")

        if str(self.cycle).upper() not in ["V", "W", "0", "1"]:
            raise ValueError(f"Invalid cycle type: {self.cycle}")

        if self.iterations <= 0:
            raise ValueError("Multigrid iterations must be positive")

        if self.restriction not in ["injection", "full_weighting"]:
            raise ValueError(f"Invalid restriction method: {self.restriction}")

        if self.prolongation not in ["constant", "linear"]:
            raise ValueError(f"Invalid prolongation method: {self.prolongation}")


@dataclass
class SmootherConfig:
    """Configuration of the smoother on all but the coarsest level."""
    type: str = "jacobi"
    omega: float = 1.0
    sweeps: int = 1

    def validate(self) -> None:
        """Validate smoother configuration."""
        if self.type not in PRECONDITIONER_TYPES:
            raise ValueError(f"Invalid smoother type: {self.type}")

        if self.sweeps < 0:
            raise ValueError("Smoothing sweeps must be non-negative")

        if not 0 < self.omega <= 2:
            logger.warning(f"Relaxation parameter {self.omega} may cause instability")


@dataclass
class CoarseSolverConfig:
    """Configuration of the coarsest-level solver."""
    type: str = "defect_correction"
    preconditioner: str = "jacobi"
    omega: float = 1.0
    min_iterations: int = 1
    max_iterations: int = 100
    tolerance_rel: float = 1e-5
    tolerance_abs: float = 1e-5

    def validate(self) -> None:
        """Validate coarse solver configuration."""
        if self.type not in COARSE_SOLVER_TYPES:
            raise ValueError(f"Invalid coarse solver type: {self.type}")

        if self.preconditioner not in PRECONDITIONER_TYPES:
            raise ValueError(f"Invalid coarse preconditioner: {self.preconditioner}")

        if self.min_iterations < 0 or self.max_iterations < self.min_iterations:
            raise ValueError("Invalid coarse iteration bounds")

        if self.tolerance_rel <= 0 or self.tolerance_abs <= 0:
            raise ValueError("Tolerances must be positive")


@dataclass
class OuterSolverConfig:
    """Configuration of the outer defect-correction loop."""
    min_iterations: int = 1
    max_iterations: int = 10
    tolerance_rel: float = 1e-5
    tolerance_abs: float = 1e-5
    omega: float = 1.0
    implement_bc: bool = True
    evaluate_functional: bool = False

    def validate(self) -> None:
        """Validate outer solver configuration."""
        if self.min_iterations < 0 or self.max_iterations < self.min_iterations:
            raise ValueError("Invalid outer iteration bounds")

        if self.tolerance_rel <= 0 or self.tolerance_abs <= 0:
            raise ValueError("Tolerances must be positive")

        if not 0 < self.omega <= 2:
            logger.warning(f"Relaxation parameter {self.omega} may cause instability")


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_output: Optional[str] = None
    console_output: bool = True
    colored_console: bool = False

    def validate(self) -> None:
        """Validate logging configuration."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.level not in valid_levels:
            raise ValueError(f"Invalid logging level: {self.level}")


SECTIONS = {
    'time': TimeConfig,
    'control': ControlConfig,
    'space': SpaceConfig,
    'multigrid': MultigridSettings,
    'smoother': SmootherConfig,
    'coarse_solver': CoarseSolverConfig,
    'outer_solver': OuterSolverConfig,
    'logging': LoggingConfig,
}


@dataclass
class SpaceTimeConfig:
    """Complete configuration of a space-time solve."""
    time: TimeConfig = None
    control: ControlConfig = None
    space: SpaceConfig = None
    multigrid: MultigridSettings = None
    smoother: SmootherConfig = None
    coarse_solver: CoarseSolverConfig = None
    outer_solver: OuterSolverConfig = None
    logging: LoggingConfig = None

    def __post_init__(self):
        """Initialize default sections if not provided."""
        for name, section in SECTIONS.items():
            if getattr(self, name) is None:
                setattr(self, name, section())

    def validate(self) -> None:
        """Validate all configuration sections."""
        for name in SECTIONS:
            getattr(self, name).validate()

        if self.multigrid.levels > 1 and self.smoother.sweeps == 0:
            logger.warning("Multigrid with zero smoothing sweeps relies on the coarse solver only")

    @property
    def fine_steps(self) -> int:
        """Number of time steps on the finest level."""
        return self.time.coarse_steps * 2 ** (self.multigrid.levels - 1)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'SpaceTimeConfig':
        """Create configuration from dictionary."""
        config = cls()
        for name, section in SECTIONS.items():
            if config_dict and name in config_dict:
                setattr(config, name, section(**config_dict[name]))
        return config

    @classmethod
    def from_json(cls, json_path: Union[str, Path]) -> 'SpaceTimeConfig':
        """Load configuration from JSON file."""
        json_path = Path(json_path)

        if not json_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {json_path}")

        with open(json_path, 'r') as f:
            config_dict = json.load(f)

        config = cls.from_dict(config_dict)
        config.validate()

        logger.info(f"Loaded configuration from {json_path}")
        return config

    @classmethod
    def from_yaml(cls, yaml_path: Union[str, Path]) -> 'SpaceTimeConfig':
        """Load configuration from YAML file."""
        yaml_path = Path(yaml_path)

        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(yaml_path, 'r') as f:
            config_dict = yaml.safe_load(f)

        config = cls.from_dict(config_dict or {})
        config.validate()

        logger.info(f"Loaded configuration from {yaml_path}")
        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {name: asdict(getattr(self, name)) for name in SECTIONS}

    def to_json(self, json_path: Union[str, Path], indent: int = 2) -> None:
        """Save configuration to JSON file."""
        json_path = Path(json_path)
        json_path.parent.mkdir(parents=True, exist_ok=True)

        with open(json_path, 'w') as f:
            json.dump(self.to_dict(), f, indent=indent)

        logger.info(f"Saved configuration to {json_path}")

    def to_yaml(self, yaml_path: Union[str, Path]) -> None:
        """Save configuration to YAML file."""
        yaml_path = Path(yaml_path)
        yaml_path.parent.mkdir(parents=True, exist_ok=True)

        with open(yaml_path, 'w') as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, indent=2)

        logger.info(f"Saved configuration to {yaml_path}")

    def setup_logging(self) -> "logging.Logger":
        """Setup logging based on configuration."""
        numeric_level = getattr(logging, self.logging.level.upper(), None)
        if not isinstance(numeric_level, int):
            raise ValueError(f'Invalid log level: {self.logging.level}')

        return configure_logging(
            level=numeric_level,
            format_string=self.logging.format,
            log_file=self.logging.file_output,
            console_output=self.logging.console_output,
            colored_console=self.logging.colored_console,
        )

    def __str__(self) -> str:
        return (f"SpaceTimeConfig(T={self.time.coarse_steps}x2^{self.multigrid.levels - 1}, "
                f"theta={self.time.theta}, alpha={self.control.alpha}, gamma={self.control.gamma}, "
                f"{self.multigrid.cycle}-cycle, smoother={self.smoother.type})")


def create_default_config() -> SpaceTimeConfig:
    """Create default configuration (implicit Euler, single level)."""
    return SpaceTimeConfig()


def create_crank_nicolson_config(levels: int = 2) -> SpaceTimeConfig:
    """Create a Crank-Nicolson configuration with a multilevel hierarchy."""
    config = SpaceTimeConfig()
    config.time.theta = 0.5
    config.multigrid.levels = levels
    config.smoother.type = "forward_backward_gs"
    config.smoother.sweeps = 2
    config.coarse_solver.preconditioner = "forward_backward_gs"
    config.coarse_solver.tolerance_rel = 1e-8
    config.coarse_solver.tolerance_abs = 1e-12

    return config
