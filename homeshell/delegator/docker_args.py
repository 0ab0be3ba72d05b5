"""
Argument-list builders for the container engine.

Every builder returns a list of discrete tokens that is handed straight to
``subprocess.run``; nothing here ever produces a shell string.
"""

import posixpath
from typing import Optional, Sequence

from .base import CONTAINER_BIN_DIR, TOOLCHAIN_BINARY_NAME, MountSpec
from .config import DelegatorConfig

DEV_DIR = "/dev"


def _same_path(a: str, b: str) -> bool:
    return posixpath.normpath(a) == posixpath.normpath(b)


def build_mount_spec(config: DelegatorConfig, command: Optional[str] = None) -> MountSpec:
    """
    Compose the mounts and environment for the delegated command.

    Args:
        config: Delegator configuration
        command: The delegated command; a shim with the same name is not
            mounted, otherwise the shim would call itself forever

    Returns:
        MountSpec in the order the engine should receive it
    """
    spec = MountSpec()

    spec.passthrough("TMPDIR", config.tmp_dir)
    spec.passthrough("HOME", config.home_dir)
    if config.ssh_auth_sock:
        spec.passthrough("SSH_AUTH_SOCK", config.ssh_auth_sock)

    # Tools that assume the container user's own home still find the host's files
    spec.add_mount(config.home_dir, config.container_home)

    if not _same_path(config.cwd, config.home_dir):
        spec.add_mount(config.cwd, config.cwd)

    if not _same_path(config.cwd, DEV_DIR):
        spec.add_mount(DEV_DIR, DEV_DIR)

    layout = config.layout
    spec.add_mount(
        str(layout.binary_path),
        posixpath.join(CONTAINER_BIN_DIR, TOOLCHAIN_BINARY_NAME),
        read_only=True,
    )
    skip = posixpath.basename(command) if command else None
    for helper in config.credential_helpers:
        if helper == skip:
            continue
        spec.add_mount(
            str(layout.shim_path(helper)),
            posixpath.join(CONTAINER_BIN_DIR, helper),
            read_only=True,
        )

    return spec


def build_run_args(
    config: DelegatorConfig,
    command: str,
    args: Sequence[str],
) -> list[str]:
    """
    Build the full engine invocation for the delegated command.

    The caller's command becomes the entrypoint override and its arguments are
    appended verbatim after the image.
    """
    run_args = [config.docker_command, "run", "--rm", "--interactive"]
    if config.interactive_tty:
        run_args.append("--tty")
    run_args.extend(["--network", "host"])

    run_args.extend(build_mount_spec(config, command).to_args())
    run_args.extend(["--workdir", config.cwd])

    run_args.extend(["--entrypoint", command, config.image])
    run_args.extend(args)
    return run_args


def build_bootstrap_args(
    config: DelegatorConfig,
    image: str,
    workdir: str,
    argv: Sequence[str],
    user: Optional[str] = None,
) -> list[str]:
    """
    Build a minimal engine invocation for one bootstrap step.

    Only the step's working directory and the device tree are visible to the
    container; home, the SSH agent and the rest of the temp dir are not.

    Args:
        config: Delegator configuration
        image: Image to run the step in
        workdir: Host directory mounted onto itself and used as working dir
        argv: Arguments passed to the image entrypoint
        user: Optional "uid:gid" to run as, so outputs are owned by the caller

    Returns:
        List of command tokens
    """
    run_args = [config.docker_command, "run", "--rm"]
    if user:
        run_args.extend(["--user", user])

    spec = MountSpec()
    spec.add_mount(workdir, workdir)
    spec.add_mount(DEV_DIR, DEV_DIR)
    run_args.extend(spec.to_args())
    run_args.extend(["--workdir", workdir])

    run_args.append(image)
    run_args.extend(argv)
    return run_args
