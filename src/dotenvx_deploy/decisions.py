"""Selection logic for the commands, kept free of terminal I/O."""

from .envfiles import private_key_name
from .models import EnvFile, KeyStore, VaultItem


def files_to_encrypt(env_files: list[EnvFile], selected: list[EnvFile] | None = None) -> list[EnvFile]:
    """Unencrypted files among ``selected``, or among all files when nothing was chosen interactively."""
    candidates = env_files if selected is None else selected
    return [f for f in candidates if not f.is_encrypted]


def new_environment_choices(existing: list[str], standard: list[str]) -> list[str]:
    return [e for e in standard if e not in existing]


def default_new_environments(choices: list[str], requested: list[str] | None, existing: list[str]) -> list[str]:
    """Pre-checked entries when offering to create env files.

    Explicitly requested environments win; otherwise `production` is
    suggested when the project does not have it yet.
    """
    if requested:
        return [e for e in choices if e in requested]
    if "production" in choices and "production" not in existing:
        return ["production"]
    return []


def rotation_targets(environments: list[str], env: str | None, all_envs: bool) -> list[str] | None:
    """Environments to rotate from flags, or None if the user must be asked.

    Raises ValueError for an unknown ``env``.
    """
    if all_envs:
        return list(environments)
    if env:
        if env not in environments:
            raise ValueError(f'Environment "{env}" not found')
        return [env]
    return None


def deploy_to_production(env_name: str, prod: bool, preview: bool) -> bool:
    if preview:
        return False
    return prod or env_name == "production"


def missing_key_environments(env_files: list[EnvFile], key_store: KeyStore) -> list[str]:
    return [f.name for f in env_files if private_key_name(f.name) not in key_store]


def recommendations(
    dotenvx_installed: bool,
    env_files: list[EnvFile],
    key_store: KeyStore,
    bw_available: bool,
    bw_logged_in: bool,
) -> list[str]:
    """What `status` suggests doing next."""
    recs = []
    if not dotenvx_installed:
        recs.append("Run `dotenvx-deploy init` to set up encryption")
    for env_file in env_files:
        if not env_file.is_encrypted:
            recs.append(f"Encrypt {env_file.file}: `dotenvx-deploy encrypt -e {env_file.name}`")
    if key_store.exists and not bw_available:
        recs.append("Install Bitwarden CLI to backup your keys")
    if key_store.exists and bw_available and bw_logged_in:
        recs.append("Run `dotenvx-deploy bw-save` to backup keys to Bitwarden")
    return recs


def keys_to_save(key_store: KeyStore, env: str | None) -> dict[str, str]:
    """The keys bw-save should store. Raises KeyError if ``env`` has no key."""
    if env is None:
        return dict(key_store.keys)
    key_name = private_key_name(env)
    if key_name not in key_store:
        raise KeyError(key_name)
    return {key_name: key_store.keys[key_name]}


def project_items(items: list[VaultItem], project: str | None) -> list[VaultItem]:
    if not project:
        return list(items)
    return [i for i in items if i.name.startswith(f"{project}/")]


def matching_items(items: list[VaultItem], env: str | None = None, version: str | None = None) -> list[VaultItem]:
    """Narrows items to one environment and/or version."""
    result = items
    if env:
        result = [i for i in result if i.environment == env]
    if version:
        result = [i for i in result if i.version == version]
    return result


def group_by_environment(items: list[VaultItem]) -> dict[str, list[VaultItem]]:
    groups: dict[str, list[VaultItem]] = {}
    for item in items:
        groups.setdefault(item.environment, []).append(item)
    return groups


def group_by_project(items: list[VaultItem]) -> dict[str, dict[str, list[VaultItem]]]:
    groups: dict[str, dict[str, list[VaultItem]]] = {}
    for item in items:
        groups.setdefault(item.name.split("/")[0], {}).setdefault(item.environment, []).append(item)
    return groups


def latest_item(items: list[VaultItem]) -> VaultItem:
    """The item with the newest updated/created timestamp (ISO strings sort chronologically)."""
    return max(items, key=lambda i: i.timestamp or "")


def keys_from_items(items: list[VaultItem]) -> tuple[dict[str, str], list[VaultItem]]:
    """Maps each item to its private key name. Items without a value are returned separately."""
    keys = {}
    skipped = []
    for item in items:
        value = item.key_value
        if not value:
            skipped.append(item)
            continue
        keys[private_key_name(item.environment)] = value
    return keys, skipped
