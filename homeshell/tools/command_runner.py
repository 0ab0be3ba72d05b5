import logging
import shutil
import signal
import subprocess
import time
from contextlib import contextmanager
from typing import Optional, Sequence

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class HelperError(Exception):
    """A helper could not do its job; carries the exit code to report."""

    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


class ToolNotFoundError(HelperError):
    def __init__(self, tool: str):
        super().__init__(f"Required tool '{tool}' was not found on PATH", exit_code=127)
        self.tool = tool


class CommandResult(BaseModel):
    success: bool
    command: list[str]
    stdout: str | None = None
    stderr: str | None = None
    exit_code: int
    execution_time: float | None = None


def normalize_exit_code(returncode: int) -> int:
    """Map a subprocess return code to a shell-style exit status."""
    if returncode < 0:
        # Killed by a signal: report it the way a POSIX shell would
        return 128 + (-returncode)
    return returncode


def has_tool(name: str) -> bool:
    return shutil.which(name) is not None


def require_tool(name: str) -> str:
    """Return the resolved path of a tool or raise ToolNotFoundError."""
    path = shutil.which(name)
    if path is None:
        raise ToolNotFoundError(name)
    return path


@contextmanager
def _foreground_child_context():
    """Let Ctrl-C reach the child only; we report its exit status afterwards.

    The terminal delivers SIGINT to the whole foreground process group, so the
    child still receives it.
    """
    try:
        original_handler = signal.signal(signal.SIGINT, signal.SIG_IGN)
    except (ValueError, OSError):
        # Not the main thread
        original_handler = None

    try:
        yield
    finally:
        if original_handler is not None:
            try:
                signal.signal(signal.SIGINT, original_handler)
            except (ValueError, OSError):
                pass


def run_inherited(
    argv: Sequence[str],
    cwd: Optional[str] = None,
    env: Optional[dict[str, str]] = None,
) -> int:
    """
    Run a command with the caller's stdin/stdout/stderr and wait for it.

    Args:
        argv: Command tokens
        cwd: Working directory for the command
        env: Full environment for the command (default: inherited)

    Returns:
        The command's exit status, signals mapped to 128+N
    """
    argv = list(argv)
    logger.debug(f"Running: {argv}")
    try:
        with _foreground_child_context():
            proc = subprocess.run(argv, cwd=cwd, env=env, check=False)
    except FileNotFoundError as e:
        raise ToolNotFoundError(argv[0]) from e
    exit_code = normalize_exit_code(proc.returncode)
    logger.debug(f"Command {argv[0]} exited with {exit_code}")
    return exit_code


def run_captured(
    argv: Sequence[str],
    input_text: Optional[str] = None,
    cwd: Optional[str] = None,
    timeout: Optional[float] = None,
) -> CommandResult:
    """
    Run a command and capture its output as text.

    Args:
        argv: Command tokens
        input_text: Text written to the command's stdin (default: /dev/null)
        cwd: Working directory for the command
        timeout: Seconds before the command is killed

    Returns:
        CommandResult with stdout, stderr and exit code
    """
    argv = list(argv)
    logger.debug(f"Running (captured): {argv}")
    start_time = time.time()
    try:
        proc = subprocess.run(
            argv,
            cwd=cwd,
            input=input_text,
            stdin=subprocess.DEVNULL if input_text is None else None,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError as e:
        raise ToolNotFoundError(argv[0]) from e
    except subprocess.TimeoutExpired as e:
        raise HelperError(f"Command timed out after {timeout}s: {argv[0]}", exit_code=124) from e

    exit_code = normalize_exit_code(proc.returncode)
    return CommandResult(
        success=exit_code == 0,
        command=argv,
        stdout=proc.stdout,
        stderr=proc.stderr,
        exit_code=exit_code,
        execution_time=time.time() - start_time,
    )


def run_piped(producer: Sequence[str], consumer: Sequence[str]) -> int:
    """
    Run ``producer | consumer`` without a shell.

    Returns:
        The producer's exit status if it failed, else the consumer's
    """
    producer = list(producer)
    consumer = list(consumer)
    logger.debug(f"Running pipeline: {producer} | {consumer}")
    try:
        with _foreground_child_context():
            first = subprocess.Popen(producer, stdout=subprocess.PIPE)
            try:
                second = subprocess.Popen(consumer, stdin=first.stdout)
            except FileNotFoundError:
                first.kill()
                first.wait()
                raise
            finally:
                # Only the consumer reads the pipe now
                first.stdout.close()
            consumer_code = second.wait()
            producer_code = first.wait()
    except FileNotFoundError as e:
        raise ToolNotFoundError(e.filename or producer[0]) from e

    producer_code = normalize_exit_code(producer_code)
    # A pager quitting early makes the producer die of SIGPIPE; that is not a failure
    if producer_code not in (0, 128 + signal.SIGPIPE):
        return producer_code
    return normalize_exit_code(consumer_code)
