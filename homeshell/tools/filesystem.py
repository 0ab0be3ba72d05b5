import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from .command_runner import has_tool, require_tool, run_captured, run_inherited, run_piped

logger = logging.getLogger(__name__)

TREE_IGNORE = ".git|node_modules|bower_components"


def mkd(paths: Sequence[str]) -> Path:
    """Create every directory (with parents) and return the last one.

    A child process cannot change its parent shell's directory, so the path
    is returned for ``cd "$(homeshell mkd foo)"``.
    """
    if not paths:
        raise ValueError("mkd needs at least one directory")
    created = None
    for path in paths:
        created = Path(path).expanduser()
        created.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Ensured directory {created}")
    return created.resolve()


def du_supports_apparent_bytes() -> bool:
    """GNU du understands -b; BSD du does not."""
    result = run_captured(["du", "-b", "/dev/null"])
    return result.success


def _default_fs_targets(cwd: Optional[str] = None) -> list[str]:
    base = Path(cwd or ".")
    return sorted(f"./{entry.name}" for entry in base.iterdir())


def build_fs_args(paths: Sequence[str], apparent_bytes: bool, cwd: Optional[str] = None) -> list[str]:
    """Argument list for a human-readable size report."""
    args = ["du", "-sbh" if apparent_bytes else "-sh"]
    if paths:
        args.append("--")
        args.extend(paths)
    else:
        args.extend(_default_fs_targets(cwd))
    return args


def fs(paths: Sequence[str] = ()) -> int:
    """Report the size of each path, or of every entry in the current directory."""
    require_tool("du")
    args = build_fs_args(paths, du_supports_apparent_bytes())
    return run_inherited(args)


def build_tree_args(paths: Sequence[str]) -> list[str]:
    args = ["tree", "-aC", "-I", TREE_IGNORE, "--dirsfirst"]
    args.extend(paths)
    return args


def tre(paths: Sequence[str] = (), paginate: Optional[bool] = None) -> int:
    """Tree listing without VCS and dependency directories, paged on a TTY."""
    require_tool("tree")
    if paginate is None:
        paginate = sys.stdout.isatty() and has_tool("less")
    args = build_tree_args(paths)
    if paginate:
        return run_piped(args, ["less", "-FRNX"])
    return run_inherited(args)
