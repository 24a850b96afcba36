"""Build system components for relchain.

This module provides the build pipeline: deciding what to build, running
cargo with the right features per variant and platform, and orchestrating
the full release run (see relchain.build.orchestrator).
"""

from .builder import (
    LOCAL_MODE,
    REGISTRY_MODE,
    BuildReport,
    BuildResult,
    ComponentBuilder,
    check_toolchain,
)
from .executor import CommandExecutor, CommandResult, kill_process_tree
from .requirements import (
    BuildAction,
    BuildDecision,
    BuildPlan,
    BuildRequirementAnalyzer,
    ReleaseIndex,
)

__all__ = [
    "LOCAL_MODE",
    "REGISTRY_MODE",
    "BuildReport",
    "BuildResult",
    "ComponentBuilder",
    "check_toolchain",
    "CommandExecutor",
    "CommandResult",
    "kill_process_tree",
    "BuildAction",
    "BuildDecision",
    "BuildPlan",
    "BuildRequirementAnalyzer",
    "ReleaseIndex",
]
