"""
Environment-scoped command delegation for homeshell.

Runs a command inside a throwaway container that mirrors the host's home,
temp directory, working directory, device tree and SSH agent, after making
sure a pinned Docker CLI and credential helper shims are cached locally.
"""

from .base import BootstrapError, DelegatorError, EngineNotFoundError, Mount, MountSpec
from .bootstrap import ToolchainBootstrapper
from .command_wrapper import CommandDelegator
from .config import DelegatorConfig

__all__ = [
    "BootstrapError",
    "CommandDelegator",
    "DelegatorConfig",
    "DelegatorError",
    "EngineNotFoundError",
    "Mount",
    "MountSpec",
    "ToolchainBootstrapper",
]
