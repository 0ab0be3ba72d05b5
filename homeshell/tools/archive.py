"""
``targz``: tar a path, then gzip it with the best compressor available.
"""

import logging
import os
from pathlib import Path
from typing import Callable, Optional

from homeshell.messaging import emit_info, emit_success

from .command_runner import HelperError, has_tool, run_inherited

logger = logging.getLogger(__name__)

# zopfli compresses much better but is slow; above this size it is not worth it
ZOPFLI_MAX_BYTES = 52428800


def choose_compressor(size: int, available: Optional[Callable[[str], bool]] = None) -> str:
    """Pick zopfli for small archives when installed, else pigz, else gzip."""
    if available is None:
        available = has_tool
    if size < ZOPFLI_MAX_BYTES and available("zopfli"):
        return "zopfli"
    if available("pigz"):
        return "pigz"
    return "gzip"


def tar_path_for(target: str) -> Path:
    return Path(f"{target.rstrip('/')}.tar")


def targz(target: str) -> Path:
    """
    Create ``<target>.tar.gz``.

    Args:
        target: File or directory to archive

    Returns:
        Path of the created .tar.gz

    Raises:
        HelperError: If the target is missing or a step fails
    """
    if not os.path.exists(target):
        raise HelperError(f"No such file or directory: {target}")

    tmp_file = tar_path_for(target)
    exit_code = run_inherited(
        ["tar", "-cvf", str(tmp_file), "--exclude=.DS_Store", target.rstrip("/") or target]
    )
    if exit_code != 0:
        raise HelperError(f"tar failed for {target}", exit_code=exit_code)

    size = tmp_file.stat().st_size
    compressor = choose_compressor(size)
    emit_info(f"Compressing .tar ({size // 1000} kB) using `{compressor}`…")

    exit_code = run_inherited([compressor, "-v", str(tmp_file)])
    if exit_code != 0:
        raise HelperError(f"{compressor} failed for {tmp_file}", exit_code=exit_code)

    # zopfli leaves its input in place
    if tmp_file.exists():
        tmp_file.unlink()

    zipped = Path(f"{tmp_file}.gz")
    zipped_size = zipped.stat().st_size
    emit_success(f"{zipped} ({zipped_size // 1000} kB) created successfully.")
    return zipped
