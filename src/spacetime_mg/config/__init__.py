"""Configuration for space-time solver runs."""

from .settings import (
    TimeConfig,
    ControlConfig,
    SpaceConfig,
    MultigridSettings,
    SmootherConfig,
    CoarseSolverConfig,
    OuterSolverConfig,
    LoggingConfig,
    SpaceTimeConfig,
    create_default_config,
    create_crank_nicolson_config,
)

__all__ = [
    "TimeConfig",
    "ControlConfig",
    "SpaceConfig",
    "MultigridSettings",
    "SmootherConfig",
    "CoarseSolverConfig",
    "OuterSolverConfig",
    "LoggingConfig",
    "SpaceTimeConfig",
    "create_default_config",
    "create_crank_nicolson_config",
]
