import os
import shlex

import yaml
from jinja2 import Environment, StrictUndefined, TemplateError

CONFIG_FILE_NAME = ".dotenvx-deploy.yml"

DEFAULT_FOLDER = "dotenvx-keys"
DEFAULT_ENVIRONMENTS = ["production", "preview", "development", "staging", "local"]
DEFAULT_SCOPES = {"preview": "preview", "staging": "preview", "development": "development"}
DEFAULT_ITEM_NAME = "{{ project }}/{{ env }}{% if version %}/{{ version }}{% endif %}"
DEFAULT_ENV_TEMPLATE = '# {{ env }} environment variables\nHELLO="{{ env }}"\n'

DEFAULT_COMMANDS = {
    "dotenvx_command": ["npx", "@dotenvx/dotenvx"],
    "vercel_command": ["npx", "vercel@latest"],
    "bw_command": ["bw"],
    "npm_command": ["npm"],
}

VERCEL_SCOPES = ["production", "preview", "development"]


class ConfigError(Exception):
    pass


class Config:
    """Project settings, read from `.dotenvx-deploy.yml` when present."""

    def __init__(
        self,
        folder: str = DEFAULT_FOLDER,
        environments: list[str] | None = None,
        scopes: dict[str, str] | None = None,
        item_name: str = DEFAULT_ITEM_NAME,
        env_template: str = DEFAULT_ENV_TEMPLATE,
        commands: dict[str, list[str]] | None = None,
    ):
        self.folder = folder
        self.environments = environments if environments is not None else list(DEFAULT_ENVIRONMENTS)
        self.scopes = {**DEFAULT_SCOPES, **(scopes or {})}
        self.item_name = item_name
        self.env_template = env_template
        self.commands = {**DEFAULT_COMMANDS, **(commands or {})}

        for env_name, scope in self.scopes.items():
            if scope not in VERCEL_SCOPES:
                raise ConfigError(f"Scope '{scope}' for '{env_name}' must be one of {VERCEL_SCOPES}.")

        self._jinja = Environment(undefined=StrictUndefined, autoescape=False, keep_trailing_newline=True)  # noqa: S701

    def vercel_scope(self, env_name: str) -> str:
        """Maps an environment name to Vercel's production/preview/development scope."""
        return self.scopes.get(env_name, "production")

    def _render(self, template: str, **context) -> str:
        try:
            return self._jinja.from_string(template).render(**context)
        except TemplateError as e:
            raise ConfigError(f"Invalid template '{template}': {e}") from e

    def render_item_name(self, project: str | None, env: str, version: str | None = None) -> str:
        return self._render(self.item_name, project=project or "dotenvx", env=env, version=version)

    def render_env_template(self, env: str) -> str:
        return self._render(self.env_template, env=env)

    def __repr__(self):
        return f"Config(folder='{self.folder}', environments={self.environments})"


def _as_command(key: str, value) -> list[str]:
    if isinstance(value, str):
        return shlex.split(value)
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ConfigError(f"'{key}' must be a string or a list of strings.")


def load_config(file_path: str) -> Config:
    """Loads the YAML config. A missing file gives the defaults."""
    if not os.path.exists(file_path):
        return Config()

    try:
        with open(file_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse {file_path}: {e}") from e

    if data is None:
        return Config()
    if not isinstance(data, dict):
        raise ConfigError(f"{file_path} must contain a mapping.")

    known = {"folder", "environments", "scopes", "item_name", "env_template", *DEFAULT_COMMANDS}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown configuration key(s): {', '.join(unknown)}")

    environments = data.get("environments")
    if environments is not None and not (
        isinstance(environments, list) and all(isinstance(e, str) for e in environments)
    ):
        raise ConfigError("'environments' must be a list of names.")

    scopes = data.get("scopes")
    if scopes is not None and not isinstance(scopes, dict):
        raise ConfigError("'scopes' must map environment names to Vercel scopes.")

    for key in ("folder", "item_name", "env_template"):
        if key in data and not (isinstance(data[key], str) and data[key]):
            raise ConfigError(f"'{key}' must be a non-empty string.")

    commands = {key: _as_command(key, data[key]) for key in DEFAULT_COMMANDS if key in data}

    return Config(
        folder=data.get("folder", DEFAULT_FOLDER),
        environments=environments,
        scopes={str(k): str(v) for k, v in (scopes or {}).items()},
        item_name=data.get("item_name", DEFAULT_ITEM_NAME),
        env_template=data.get("env_template", DEFAULT_ENV_TEMPLATE),
        commands=commands,
    )
