"""Version information for spacetime-multigrid."""

__version__ = "0.3.0"
