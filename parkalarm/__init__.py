"""
Parking Alarm Engine
====================
Alerting for parking operations: scheduled condition checks, deduplicated
alarms, notifications and side-effect actions.

Submodules:
- alarms: Definitions, checks, lifecycle, dispatch and actions
- config: YAML and environment configuration
- runner: Command-line entry point
- constants: Default condition values and timeouts
- utils: Project paths
"""

__version__ = "0.1.0"

from . import constants, utils
from .config import EngineConfig, load_config
from .utils import CONFIG_DIR, DATA_DIR, PROJECT_ROOT

__all__ = [
    "__version__",
    "constants",
    "utils",
    "EngineConfig",
    "load_config",
    "PROJECT_ROOT",
    "CONFIG_DIR",
    "DATA_DIR",
]
