"""
One-time population of the scratch directory with the pinned Docker CLI and
the credential helper shims.

Every step that touches downloaded bytes runs in its own throwaway container
that can only see a per-run staging directory. Results are moved into ``bin/``
with ``os.replace`` so a reader never observes a half-written executable.
"""

import hashlib
import logging
import os
import shlex
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Optional, Sequence

from homeshell.tools.command_runner import run_inherited

from .base import TOOLCHAIN_BINARY_NAME, BootstrapError
from .config import DelegatorConfig
from .docker_args import build_bootstrap_args

logger = logging.getLogger(__name__)

ARCHIVE_NAME = "docker.tgz"
TAR_NAME = "docker.tar"
EXECUTABLE_MODE = 0o755

Runner = Callable[[Sequence[str]], int]


def render_shim(delegator_path: str, scratch_dir: str, helper: str) -> str:
    """Shell script that routes a credential helper back through the delegator."""
    return (
        "#!/bin/sh\n"
        f"exec {shlex.quote(delegator_path)} --scratch-dir {shlex.quote(scratch_dir)} "
        f'{shlex.quote(helper)} "$@"\n'
    )


def sha256_file(path: Path, chunk_size: int = 1024 * 1024) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


class ToolchainBootstrapper:
    """Downloads and installs the toolchain into the scratch directory."""

    def __init__(self, config: DelegatorConfig, runner: Optional[Runner] = None):
        """
        Args:
            config: Delegator configuration
            runner: Callable that runs an argument list and returns its exit
                code (default: run with inherited stdio)
        """
        self.config = config
        self.layout = config.layout
        self._runner = runner or run_inherited

    def ensure_directories(self):
        self.layout.bin_dir.mkdir(parents=True, exist_ok=True)
        self.layout.staging_dir.mkdir(parents=True, exist_ok=True)

    def is_bootstrapped(self) -> bool:
        """The binary counts as installed once it is executable at its path."""
        return _is_executable(self.layout.binary_path)

    def missing_shims(self) -> list[Path]:
        return [path for path in self.layout.shim_paths if not _is_executable(path)]

    def ensure(self) -> bool:
        """
        Bootstrap if needed.

        Returns:
            True if a bootstrap was performed, False if the cache was warm
        """
        self.ensure_directories()
        if self.is_bootstrapped():
            missing = self.missing_shims()
            if missing:
                # Binary survived but shims did not; regenerating them is local-only
                logger.info(f"Regenerating {len(missing)} missing shim(s)")
                with self._stage() as stage:
                    self._install_shims(stage)
            return False
        self.bootstrap()
        return True

    def bootstrap(self):
        logger.info(
            f"Bootstrapping Docker CLI {self.config.docker_version} into {self.layout.bin_dir}"
        )
        with self._stage() as stage:
            archive = self._download(stage)
            self._verify(archive)
            tarball = self._decompress(stage, archive)
            self._unpack(stage, tarball)
            self._install_binary(stage)
            self._install_shims(stage)
        logger.info("Bootstrap complete")

    @contextmanager
    def _stage(self):
        """A fresh per-run directory under staging/, removed afterwards."""
        stage = Path(tempfile.mkdtemp(prefix="bootstrap-", dir=self.layout.staging_dir))
        try:
            yield stage
        finally:
            shutil.rmtree(stage, ignore_errors=True)

    def _run_step(self, step: str, image: str, stage: Path, argv: Sequence[str]):
        args = build_bootstrap_args(
            self.config,
            image=image,
            workdir=str(stage),
            argv=argv,
            user=self.config.user,
        )
        logger.info(f"Bootstrap step: {step}")
        logger.debug(f"{step}: {args}")
        exit_code = self._runner(args)
        if exit_code != 0:
            raise BootstrapError(step, exit_code)

    def _download(self, stage: Path) -> Path:
        url = self.config.toolchain_url
        self._run_step(
            "download",
            self.config.fetch_image,
            stage,
            ["--fail", "--silent", "--show-error", "--location", "--output", ARCHIVE_NAME, url],
        )
        archive = stage / ARCHIVE_NAME
        if not archive.is_file():
            raise BootstrapError("download", detail=f"{url} produced no {ARCHIVE_NAME}")
        return archive

    def _verify(self, archive: Path):
        actual = sha256_file(archive)
        expected = self.config.docker_sha256
        if expected is None:
            if self.config.verify_download:
                raise BootstrapError(
                    "verify",
                    detail=f"no docker_sha256 pinned for {self.config.toolchain_url} "
                    f"(download has sha256 {actual}). Check it against a trusted source, then "
                    f"run: homeshell config set docker_sha256 <digest>. To skip verification "
                    f"instead: homeshell config set docker_verify false",
                )
            logger.warning(
                f"docker_verify is off; installing unverified download (sha256 {actual})"
            )
            return
        if actual != expected:
            raise BootstrapError(
                "verify",
                detail=f"sha256 mismatch for {self.config.toolchain_url}: "
                f"expected {expected}, got {actual}",
            )
        logger.info("Download checksum verified")

    def _decompress(self, stage: Path, archive: Path) -> Path:
        self._run_step("decompress", self.config.unpack_image, stage, ["gzip", "-d", archive.name])
        tarball = stage / TAR_NAME
        if not tarball.is_file():
            raise BootstrapError("decompress", detail=f"{TAR_NAME} not produced")
        # gzip removes its input on success; make sure it is gone either way
        archive.unlink(missing_ok=True)
        return tarball

    def _unpack(self, stage: Path, tarball: Path):
        self._run_step("unpack", self.config.unpack_image, stage, ["tar", "-xf", tarball.name])

    def _install_binary(self, stage: Path):
        unpacked = stage / TOOLCHAIN_BINARY_NAME / TOOLCHAIN_BINARY_NAME
        if not unpacked.is_file():
            raise BootstrapError(
                "install",
                detail=f"archive did not contain {TOOLCHAIN_BINARY_NAME}/{TOOLCHAIN_BINARY_NAME}",
            )
        os.chmod(unpacked, EXECUTABLE_MODE)
        os.replace(unpacked, self.layout.binary_path)
        logger.info(f"Installed {self.layout.binary_path}")

    def _install_shims(self, stage: Path):
        scratch = str(self.layout.scratch_dir)
        for helper in self.config.credential_helpers:
            target = self.layout.shim_path(helper)
            staged = stage / helper
            try:
                staged.write_text(render_shim(self.config.delegator_path, scratch, helper))
                os.chmod(staged, EXECUTABLE_MODE)
                os.replace(staged, target)
            except OSError as e:
                raise BootstrapError("shims", detail=str(e)) from e
            logger.info(f"Installed shim {target}")
