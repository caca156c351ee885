import re

from .config import DEFAULT_COMMANDS
from .runner import CommandResult, is_available, run

DEPLOYMENT_URL = re.compile(r"https://[^\s]+\.vercel\.app")


def extract_deployment_url(output: str) -> str | None:
    """Finds the first `https://*.vercel.app` URL in `vercel deploy` output."""
    match = DEPLOYMENT_URL.search(output)
    return match.group(0) if match else None


def env_listing_contains(output: str, name: str, scope: str | None = None) -> bool:
    """True if `vercel env ls` output lists a variable called ``name``.

    With ``scope``, the same row must also name that environment.
    """
    name_pattern = re.compile(rf"(?<![A-Za-z0-9_]){re.escape(name)}(?![A-Za-z0-9_])")
    for line in output.splitlines():
        if not name_pattern.search(line):
            continue
        rest = name_pattern.sub(" ", line)
        if scope is None or re.search(rf"\b{re.escape(scope)}\b", rest, re.IGNORECASE):
            return True
    return False


class VercelClient:
    """Thin wrapper over the Vercel CLI."""

    def __init__(self, cwd: str, command: list[str] | None = None):
        self.cwd = cwd
        self.command = command or DEFAULT_COMMANDS["vercel_command"]

    def is_available(self) -> bool:
        return is_available([*self.command, "--version"])

    def list_env(self) -> str:
        """Raw `vercel env ls` output; empty if the project is not linked."""
        return run([*self.command, "env", "ls"], cwd=self.cwd, silent=True).stdout

    def remove_env(self, name: str, scope: str) -> CommandResult:
        return run([*self.command, "env", "rm", name, scope, "-y"], cwd=self.cwd, silent=True)

    def add_env(self, name: str, scope: str, value: str) -> CommandResult:
        """Adds a variable, passing its value on stdin so it never shows up in argv."""
        return run([*self.command, "env", "add", name, scope], cwd=self.cwd, input=value)

    def set_env(self, name: str, scope: str, value: str) -> bool:
        """Replaces ``name`` in ``scope``. Returns True if an old value in that scope was removed first.

        Repeated calls leave exactly one remote variable.
        """
        replaced = False
        if env_listing_contains(self.list_env(), name, scope):
            replaced = self.remove_env(name, scope).ok
        self.add_env(name, scope, value)
        return replaced

    def deploy(self, prod: bool = False) -> CommandResult:
        args = [*self.command, "deploy"]
        if prod:
            args.append("--prod")
        return run(args, cwd=self.cwd)
