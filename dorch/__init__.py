"""
dorch - Deployment orchestrator for interdependent smart contracts.

Resolves a dependency graph over named deployment units, executes each unit
at most once per network and records the resulting addresses so later units
and later runs can reference them.
"""

__version__ = "0.1.0"


__all__ = ["UnitRegistry", "Selection", "deploy", "load_config", "__version__"]

from .config import load_config
from .executor import deploy
from .registry import UnitRegistry
from .selector import Selection
