"""
``setjdk``: switch the active Java version.

A subprocess cannot change its parent's environment, so the result is a pair
of ``export`` lines meant for ``eval "$(homeshell setjdk 17)"``.
"""

import logging
import os
import re
import shlex
from pathlib import Path
from typing import Optional

from .command_runner import HelperError, run_captured

logger = logging.getLogger(__name__)

MACOS_JAVA_HOME = "/usr/libexec/java_home"
LINUX_JVM_DIR = "/usr/lib/jvm"


def find_java_home(
    version: str,
    system: str,
    jvm_dir: str = LINUX_JVM_DIR,
) -> str:
    """
    Locate the JDK for a version.

    Args:
        version: Version requested, e.g. "17" or "1.8"
        system: platform.system() value
        jvm_dir: Directory scanned for JDKs on Linux

    Returns:
        The JDK home directory

    Raises:
        HelperError: If no matching JDK is installed
    """
    if system == "Darwin":
        result = run_captured([MACOS_JAVA_HOME, "-v", version])
        home = (result.stdout or "").strip()
        if not result.success or not home:
            raise HelperError(f"No JDK matching version {version} found")
        return home

    root = Path(jvm_dir)
    if root.is_dir():
        # The version must be a whole dash or dot separated token of the name
        token = re.compile(rf"(^|[-_.]){re.escape(version)}($|[-_.])")
        candidates = sorted(
            entry for entry in root.iterdir()
            if entry.is_dir() and not entry.is_symlink() and token.search(entry.name)
        )
        for candidate in candidates:
            if (candidate / "bin" / "java").exists():
                return str(candidate)
    raise HelperError(f"No JDK matching version {version} found in {jvm_dir}")


def remove_from_path(path_value: str, entry: str) -> str:
    parts = [p for p in path_value.split(os.pathsep) if p and p != entry]
    return os.pathsep.join(parts)


def build_exports(java_home: str, path_value: str, old_java_home: Optional[str] = None) -> list[str]:
    """Shell lines that point JAVA_HOME and PATH at a new JDK."""
    new_path = path_value
    if old_java_home:
        new_path = remove_from_path(new_path, os.path.join(old_java_home, "bin"))
    new_bin = os.path.join(java_home, "bin")
    new_path = remove_from_path(new_path, new_bin)
    new_path = os.pathsep.join([new_bin, new_path]) if new_path else new_bin
    return [
        f"export JAVA_HOME={shlex.quote(java_home)}",
        f"export PATH={shlex.quote(new_path)}",
    ]


def setjdk(version: str, system: str, path_value: str, old_java_home: Optional[str] = None) -> list[str]:
    java_home = find_java_home(version, system)
    logger.info(f"Switching JAVA_HOME to {java_home}")
    return build_exports(java_home, path_value, old_java_home)
