"""
The command delegator: bootstrap the toolchain if needed, then run the
requested command inside a container with a mirrored view of the host.
"""

import logging
import shutil
from typing import Optional, Sequence

from homeshell.tools.command_runner import ToolNotFoundError, run_inherited

from .base import EngineNotFoundError
from .bootstrap import Runner, ToolchainBootstrapper
from .config import DelegatorConfig
from .docker_args import build_run_args

logger = logging.getLogger(__name__)


class CommandDelegator:
    """
    Runs commands in an isolated container that shares the host's home, temp
    dir, working directory, device tree and SSH agent.
    """

    def __init__(
        self,
        config: DelegatorConfig,
        runner: Optional[Runner] = None,
        bootstrapper: Optional[ToolchainBootstrapper] = None,
    ):
        """
        Initialize the delegator.

        Args:
            config: Delegator configuration, built once at startup
            runner: Callable that runs an argument list and returns its exit code
            bootstrapper: Toolchain bootstrapper (created from config if None)
        """
        self.config = config
        self._runner = runner or run_inherited
        self.bootstrapper = bootstrapper or ToolchainBootstrapper(config, runner=self._runner)

    def is_engine_available(self) -> bool:
        return shutil.which(self.config.docker_command) is not None

    def build_args(self, command: str, args: Sequence[str]) -> list[str]:
        return build_run_args(self.config, command, args)

    def run(self, command: str, args: Sequence[str] = ()) -> int:
        """
        Run a command in the isolated context.

        Args:
            command: Entrypoint to run inside the container
            args: Arguments forwarded verbatim

        Returns:
            The delegated command's exit code

        Raises:
            BootstrapError: If the toolchain could not be installed
            EngineNotFoundError: If the container engine client is missing
        """
        try:
            if self.bootstrapper.ensure():
                logger.info("Toolchain bootstrapped")
            run_args = self.build_args(command, args)
            logger.debug(f"Delegating: {run_args}")
            return self._runner(run_args)
        except ToolNotFoundError as e:
            if e.tool == self.config.docker_command:
                raise EngineNotFoundError(self.config.docker_command) from e
            raise

    def get_status(self) -> dict:
        layout = self.config.layout
        return {
            "scratch_dir": str(layout.scratch_dir),
            "binary": str(layout.binary_path),
            "bootstrapped": self.bootstrapper.is_bootstrapped(),
            "missing_shims": [str(p) for p in self.bootstrapper.missing_shims()],
            "engine_available": self.is_engine_available(),
            "image": self.config.image,
            "toolchain_url": self.config.toolchain_url,
            "checksum_pinned": self.config.docker_sha256 is not None,
        }
