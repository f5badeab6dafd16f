"""
Rule module system for Strata.

This package turns rule module sources into the active rule set the
resolver evaluates.

Key Components:
    - RuleModuleSource / RuleSource: Persisted (YAML) form of a module
    - ModuleLoader: Reads sources and compiles them into immutable rules
    - ModuleStore: Atomic, versioned activation of a module stack
    - ModuleStack: Immutable snapshot handed to each evaluation
"""

from strata.modules.loader import ModuleLoader
from strata.modules.manifest import (
    RuleModuleSource,
    RuleSource,
    load_module_source,
    load_module_source_from_string,
)
from strata.modules.store import ModuleStack, ModuleStore

__all__ = [
    "ModuleLoader",
    "ModuleStack",
    "ModuleStore",
    "RuleModuleSource",
    "RuleSource",
    "load_module_source",
    "load_module_source_from_string",
]
