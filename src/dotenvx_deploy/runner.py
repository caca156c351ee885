import os
import shlex
import subprocess
import sys
from collections.abc import Callable, Iterable
from typing import Any

from .models import ItemResult


def _debug(message):
    """Prints a debug message to stderr if DOTENVX_DEPLOY_DEBUG is set."""
    if os.environ.get("DOTENVX_DEPLOY_DEBUG"):
        print(f"DEBUG: {message}", file=sys.stderr)


REDACTED = "****"


def masked(args: list[str], redact: Iterable[int] = ()) -> list[str]:
    """Copy of ``args`` with the positions in ``redact`` replaced, for printing."""
    hidden = set(redact)
    return [REDACTED if i in hidden else arg for i, arg in enumerate(args)]


class CommandError(Exception):
    """Raised when an external command exits non-zero or cannot be started."""

    def __init__(self, command: list[str], returncode: int | None, stderr: str, redact: Iterable[int] = ()):
        self.command = masked(command, redact)
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or f"exit code {returncode}"
        super().__init__(f"Command failed: {shlex.join(self.command)}\n{detail}")


class CommandResult:
    """Captured output of a finished command."""

    def __init__(self, stdout: str = "", stderr: str = "", ok: bool = True):
        self.stdout = stdout
        self.stderr = stderr
        self.ok = ok

    def __repr__(self):
        return f"CommandResult(ok={self.ok}, stdout={len(self.stdout)} chars, stderr={len(self.stderr)} chars)"


def _as_args(command: str | list[str]) -> list[str]:
    if isinstance(command, str):
        return shlex.split(command)
    return list(command)


def run(
    command: str | list[str],
    cwd: str | None = None,
    silent: bool = False,
    input: str | None = None,
    redact: Iterable[int] = (),
) -> CommandResult:
    """Runs a command and captures its output.

    A non-zero exit raises CommandError with the command's stderr. With
    ``silent=True`` the failure is absorbed and an empty stdout is returned,
    the error text being kept in ``stderr``. Arguments at the ``redact``
    positions are masked in debug output and error messages.
    """
    args = _as_args(command)
    _debug(f"Running: {shlex.join(masked(args, redact))} (cwd={cwd or os.getcwd()})")
    try:
        completed = subprocess.run(  # noqa: S603
            args,
            cwd=cwd,
            input=input,
            capture_output=True,
            text=True,
            check=True,
        )
    except FileNotFoundError as e:
        error = CommandError(args, None, f"{args[0]}: command not found", redact)
        if not silent:
            raise error from e
        _debug(str(error))
        return CommandResult(stderr=str(error), ok=False)
    except subprocess.CalledProcessError as e:
        error = CommandError(args, e.returncode, e.stderr or e.stdout or "", redact)
        if not silent:
            raise error from e
        _debug(str(error))
        return CommandResult(stderr=str(error), ok=False)

    _debug(f"Exit 0: {shlex.join(masked(args, redact)[:3])}")
    return CommandResult(stdout=completed.stdout or "", stderr=completed.stderr or "")


def run_with_output(command: str | list[str], cwd: str | None = None) -> int:
    """Runs a command attached to the current terminal and returns its exit code."""
    args = _as_args(command)
    _debug(f"Running interactively: {shlex.join(args)}")
    try:
        return subprocess.call(args, cwd=cwd)  # noqa: S603
    except FileNotFoundError as e:
        raise CommandError(args, None, f"{args[0]}: command not found") from e


def is_available(command: str | list[str]) -> bool:
    """Returns True if the command runs and exits 0."""
    try:
        run(command)
    except CommandError:
        return False
    return True


def run_batch(
    items: Iterable[Any],
    action: Callable[[Any], Any],
    isolate_failures: bool = True,
    on_error: Callable[[Any, Exception], None] | None = None,
    errors: tuple[type[Exception], ...] = (CommandError, OSError),
) -> list[ItemResult]:
    """Applies ``action`` to every item, recording one ItemResult per item.

    With ``isolate_failures`` an exception listed in ``errors`` is recorded
    and the loop moves on; otherwise it propagates immediately. Items already
    processed are never rolled back.
    """
    results = []
    for item in items:
        try:
            value = action(item)
        except errors as e:
            if not isolate_failures:
                raise
            _debug(f"Item {item!r} failed: {e}")
            if on_error:
                on_error(item, e)
            results.append(ItemResult(item=item, ok=False, error=str(e)))
            continue
        results.append(ItemResult(item=item, ok=True, value=value))
    return results
