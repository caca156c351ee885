import re

from .config import DEFAULT_COMMANDS
from .envfiles import RESERVED_VARIABLE_PREFIX
from .project import DOTENVX_PACKAGE
from .runner import CommandResult, run

SHELL_EXPORT_LINE = re.compile(r'^export\s+(\w+)="(.*)"\s*$')
PUBLIC_KEY_VALUE = re.compile(r'DOTENV_PUBLIC_KEY(?:_\w+)?="([^"]+)"')


def parse_shell_exports(output: str) -> dict[str, str]:
    """Parses `dotenvx get --format shell` output into name -> value.

    Values are kept exactly as quoted by dotenvx so they can be written back
    verbatim. dotenvx's own DOTENV_* entries are dropped.
    """
    values = {}
    for line in output.splitlines():
        match = SHELL_EXPORT_LINE.match(line.strip())
        if match and not match.group(1).startswith(RESERVED_VARIABLE_PREFIX):
            values[match.group(1)] = match.group(2)
    return values


def extract_public_key(content: str) -> str | None:
    match = PUBLIC_KEY_VALUE.search(content)
    return match.group(1) if match else None


def render_plain_env(env_name: str, values: dict[str, str]) -> str:
    body = "\n".join(f'{key}="{value}"' for key, value in values.items())
    return f"# {env_name} environment\n{body}\n"


class DotenvxAgent:
    """Runs dotenvx (through npx by default) inside a project directory."""

    def __init__(self, cwd: str, command: list[str] | None = None, npm_command: list[str] | None = None):
        self.cwd = cwd
        self.command = command or DEFAULT_COMMANDS["dotenvx_command"]
        self.npm_command = npm_command or DEFAULT_COMMANDS["npm_command"]

    def _run(self, args: list[str], silent: bool = False, secret: tuple[int, ...] = ()) -> CommandResult:
        offset = len(self.command)
        return run([*self.command, *args], cwd=self.cwd, silent=silent, redact=[offset + i for i in secret])

    def install(self) -> CommandResult:
        """Adds @dotenvx/dotenvx to the project's dependencies."""
        return run([*self.npm_command, "install", DOTENVX_PACKAGE, "--save"], cwd=self.cwd)

    def encrypt(self, file_name: str) -> CommandResult:
        """Encrypts a file, generating a key pair in `.env.keys` if none exists for it."""
        return self._run(["encrypt", "-f", file_name])

    def set(self, key: str, value: str, file_name: str) -> CommandResult:
        return self._run(["set", key, value, "-f", file_name], secret=(2,))

    def decrypt_values(self, file_name: str) -> dict[str, str]:
        """Returns the decrypted variables of an env file."""
        result = self._run(["get", "-f", file_name, "--format", "shell"])
        return parse_shell_exports(result.stdout)
