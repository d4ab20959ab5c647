"""
Utilities
=========
Project path resolution.
"""

from pathlib import Path

# =============================================================================
# PROJECT PATHS (Single source of truth)
# =============================================================================

# Project root is one level up from the package (parkalarm/utils.py -> workspace)
PROJECT_ROOT = Path(__file__).parent.parent.resolve()
CONFIG_DIR = PROJECT_ROOT / "config"
DATA_DIR = PROJECT_ROOT / "data"
