"""
Base types shared by the delegator components.
"""

import csv
import io
from dataclasses import dataclass, field
from pathlib import Path

BIN_DIRNAME = "bin"
STAGING_DIRNAME = "staging"
TOOLCHAIN_BINARY_NAME = "docker"
CONTAINER_BIN_DIR = "/usr/local/bin"


class DelegatorError(Exception):
    """Base class for delegator failures."""

    exit_code = 1


class EngineNotFoundError(DelegatorError):
    """The container engine client is not on PATH."""

    exit_code = 127

    def __init__(self, command: str):
        super().__init__(f"Container engine client '{command}' not found on PATH")
        self.command = command


class BootstrapError(DelegatorError):
    """A bootstrap step failed; the cache is left without a toolchain binary."""

    def __init__(self, step: str, exit_code: int = 1, detail: str = ""):
        message = f"Bootstrap step '{step}' failed with exit code {exit_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.step = step
        self.exit_code = exit_code


@dataclass(frozen=True)
class Mount:
    """A bind mount of a host path into the container."""

    host_path: str
    container_path: str
    read_only: bool = False

    def to_mount_arg(self) -> str:
        """
        Render the value of a ``--mount`` flag.

        The engine parses it as one CSV record, so fields holding commas or
        quotes are CSV-quoted. Colons need no escaping.
        """
        fields = ["type=bind", f"source={self.host_path}", f"target={self.container_path}"]
        if self.read_only:
            fields.append("readonly")
        buf = io.StringIO()
        csv.writer(buf, lineterminator="").writerow(fields)
        return buf.getvalue()


@dataclass
class MountSpec:
    """Ordered bind mounts plus the environment variables passed through."""

    mounts: list[Mount] = field(default_factory=list)
    env: list[tuple[str, str]] = field(default_factory=list)

    def add_mount(self, host_path: str, container_path: str, read_only: bool = False):
        self.mounts.append(Mount(str(host_path), str(container_path), read_only))

    def add_env(self, name: str, value: str):
        self.env.append((name, value))

    def passthrough(self, name: str, path: str):
        """Pass a path variable through and mount it at the same location."""
        self.add_env(name, path)
        self.add_mount(path, path)

    def has_mount(self, host_path: str, container_path: str) -> bool:
        return any(
            m.host_path == host_path and m.container_path == container_path
            for m in self.mounts
        )

    def to_args(self) -> list[str]:
        args = []
        for name, value in self.env:
            args.extend(["--env", f"{name}={value}"])
        for mount in self.mounts:
            args.extend(["--mount", mount.to_mount_arg()])
        return args


@dataclass(frozen=True)
class ToolchainLayout:
    """Where the cached toolchain and shims live under the scratch directory."""

    scratch_dir: Path
    credential_helpers: tuple[str, ...] = ()

    @property
    def bin_dir(self) -> Path:
        return self.scratch_dir / BIN_DIRNAME

    @property
    def staging_dir(self) -> Path:
        return self.scratch_dir / STAGING_DIRNAME

    @property
    def binary_path(self) -> Path:
        return self.bin_dir / TOOLCHAIN_BINARY_NAME

    def shim_path(self, helper: str) -> Path:
        return self.bin_dir / helper

    @property
    def shim_paths(self) -> list[Path]:
        return [self.shim_path(helper) for helper in self.credential_helpers]
