"""
Configuration for the command delegator.

All ambient state (environment variables, working directory, TTY status and
the user config file) is read exactly once, in
``DelegatorConfig.from_environment``. The rest of the delegator only sees the
resulting frozen struct.
"""

import logging
import os
import platform
import shutil
import sys
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from homeshell import config as user_config

from .base import ToolchainLayout

logger = logging.getLogger(__name__)

DEFAULT_IMAGE = "gcr.io/google.com/cloudsdktool/google-cloud-cli:latest"
DEFAULT_CONTAINER_HOME = "/root"
DEFAULT_DOCKER_COMMAND = "docker"
DEFAULT_DOCKER_VERSION = "24.0.7"
DEFAULT_FETCH_IMAGE = "curlimages/curl:latest"
DEFAULT_UNPACK_IMAGE = "busybox:latest"
DEFAULT_CREDENTIAL_HELPERS = ("docker-credential-gcloud", "docker-credential-gcr")
DOCKER_URL_TEMPLATE = (
    "https://download.docker.com/linux/static/stable/{arch}/docker-{version}.tgz"
)
SCRATCH_DIRNAME = "cosh"

# macOS points TMPDIR at a per-session /var/folders path that does not survive
# reboots and is not shared with the Docker VM, so the cache lives in /tmp.
DARWIN_TMP_DIR = "/tmp"

_ARCH_ALIASES = {
    "amd64": "x86_64",
    "x86_64": "x86_64",
    "arm64": "aarch64",
    "aarch64": "aarch64",
    "armv7l": "armhf",
    "armv6l": "armel",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
}


def resolve_tmp_dir(environ: Mapping[str, str], system: str) -> str:
    """Pick the temp directory that anchors the scratch cache."""
    if system == "Darwin":
        return DARWIN_TMP_DIR
    tmp_dir = environ.get("TMPDIR", "")
    if tmp_dir:
        return os.path.abspath(tmp_dir).rstrip("/") or "/"
    return os.path.abspath(tempfile.gettempdir())


def normalize_arch(machine: str) -> str:
    return _ARCH_ALIASES.get(machine.lower(), machine.lower())


def resolve_cwd(environ: Mapping[str, str]) -> str:
    """
    The working directory as the user sees it.

    os.getcwd() resolves symlinks while $HOME usually does not, so $PWD is
    preferred when it names the same directory.
    """
    cwd = os.getcwd()
    pwd = environ.get("PWD")
    if pwd and os.path.isabs(pwd):
        try:
            if os.path.samefile(pwd, cwd):
                return pwd
        except OSError:
            pass
    return cwd


def _stdin_isatty() -> bool:
    try:
        return sys.stdin is not None and sys.stdin.isatty()
    except (AttributeError, ValueError, OSError):
        return False


@dataclass(frozen=True)
class DelegatorConfig:
    """Everything the delegator needs to know about its environment."""

    tmp_dir: str
    home_dir: str
    cwd: str
    scratch_dir: Path
    ssh_auth_sock: Optional[str] = None
    interactive_tty: bool = False
    image: str = DEFAULT_IMAGE
    container_home: str = DEFAULT_CONTAINER_HOME
    docker_command: str = DEFAULT_DOCKER_COMMAND
    docker_version: str = DEFAULT_DOCKER_VERSION
    docker_arch: str = "x86_64"
    docker_url: Optional[str] = None
    docker_sha256: Optional[str] = None
    verify_download: bool = True
    fetch_image: str = DEFAULT_FETCH_IMAGE
    unpack_image: str = DEFAULT_UNPACK_IMAGE
    credential_helpers: tuple[str, ...] = field(default=DEFAULT_CREDENTIAL_HELPERS)
    delegator_path: str = "cosh"
    user: Optional[str] = None

    @property
    def layout(self) -> ToolchainLayout:
        return ToolchainLayout(
            scratch_dir=self.scratch_dir,
            credential_helpers=self.credential_helpers,
        )

    @property
    def toolchain_url(self) -> str:
        if self.docker_url:
            return self.docker_url
        return DOCKER_URL_TEMPLATE.format(arch=self.docker_arch, version=self.docker_version)

    @classmethod
    def from_environment(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        *,
        scratch_dir: Optional[str] = None,
        cwd: Optional[str] = None,
        system: Optional[str] = None,
        machine: Optional[str] = None,
        interactive_tty: Optional[bool] = None,
        delegator_path: Optional[str] = None,
        user: Optional[str] = None,
        config_file: Optional[str] = None,
    ) -> "DelegatorConfig":
        """
        Build the config from the process environment and the user config file.

        Args:
            environ: Environment mapping (default: os.environ)
            scratch_dir: Explicit scratch directory (the shims' --scratch-dir)
            cwd: Working directory (default: $PWD or os.getcwd())
            system: platform.system() override, mainly for testing
            machine: platform.machine() override, mainly for testing
            interactive_tty: Whether stdin is a TTY (default: detected)
            delegator_path: Executable the generated shims call back into
            user: "uid:gid" for bootstrap containers (default: current user)
            config_file: Config file to read (default: ~/.homeshell/homeshell.cfg)

        Returns:
            A frozen DelegatorConfig
        """
        if environ is None:
            environ = os.environ
        if system is None:
            system = platform.system()
        if machine is None:
            machine = platform.machine()
        if interactive_tty is None:
            interactive_tty = _stdin_isatty()

        def cfg(key: str) -> Optional[str]:
            return user_config.get_value(key, config_file)

        tmp_dir = resolve_tmp_dir(environ, system)
        home_dir = os.path.abspath(environ.get("HOME") or os.path.expanduser("~"))
        # Engine bind mounts and the generated shims both need absolute paths
        scratch = os.path.abspath(
            scratch_dir or cfg("scratch_dir") or os.path.join(tmp_dir, SCRATCH_DIRNAME)
        )
        helpers = user_config.get_list_value("credential_helpers", config_file)

        if delegator_path is None:
            delegator_path = shutil.which("cosh", path=environ.get("PATH")) or "cosh"
        if user is None and hasattr(os, "getuid"):
            user = f"{os.getuid()}:{os.getgid()}"

        result = cls(
            tmp_dir=tmp_dir,
            home_dir=home_dir.rstrip("/") or "/",
            cwd=os.path.abspath(cwd) if cwd else resolve_cwd(environ),
            scratch_dir=Path(scratch),
            ssh_auth_sock=environ.get("SSH_AUTH_SOCK") or None,
            interactive_tty=interactive_tty,
            image=cfg("image") or DEFAULT_IMAGE,
            container_home=cfg("container_home") or DEFAULT_CONTAINER_HOME,
            docker_command=cfg("docker_command") or DEFAULT_DOCKER_COMMAND,
            docker_version=cfg("docker_version") or DEFAULT_DOCKER_VERSION,
            docker_arch=cfg("docker_arch") or normalize_arch(machine),
            docker_url=cfg("docker_url"),
            docker_sha256=(cfg("docker_sha256") or "").lower() or None,
            verify_download=user_config.get_bool_value("docker_verify", True, config_file),
            fetch_image=cfg("fetch_image") or DEFAULT_FETCH_IMAGE,
            unpack_image=cfg("unpack_image") or DEFAULT_UNPACK_IMAGE,
            credential_helpers=tuple(helpers) if helpers is not None else DEFAULT_CREDENTIAL_HELPERS,
            delegator_path=delegator_path,
            user=user,
        )
        logger.debug(f"Delegator config: {result}")
        return result
