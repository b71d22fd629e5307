"""Driftline: drift routing and fact provenance for branching conversations."""

from .config import DriftConfig, DriftPolicy, load_config
from .errors import DriftError
from .routing import DriftInput, DriftOrchestrator, DriftResult, RouteAction

__version__ = "0.1.0"

__all__ = [
    "DriftConfig",
    "DriftError",
    "DriftInput",
    "DriftOrchestrator",
    "DriftPolicy",
    "DriftResult",
    "RouteAction",
    "load_config",
]
