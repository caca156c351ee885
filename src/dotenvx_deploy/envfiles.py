"""Scanning of `.env*` files and reading/writing of the `.env.keys` store."""

import os
import re
import tempfile
import time

from .models import (
    ENV_FILE_PREFIX,
    KEYS_FILE_NAME,
    PRIVATE_KEY_PREFIX,
    ROOT_ENV_NAME,
    EnvFile,
    KeyStore,
)
from .runner import _debug

ENCRYPTION_MARKERS = ("DOTENV_PUBLIC_KEY", "encrypted:")
EXCLUDED_SUFFIXES = (".keys", ".example", ".sample")
RESERVED_VARIABLE_PREFIX = "DOTENV_"

VARIABLE_LINE = re.compile(r"^([A-Z_][A-Za-z0-9_]*)=")
PRIVATE_KEY_LINE = re.compile(r'^(DOTENV_PRIVATE_KEY(?:_[A-Z0-9_]+)?)="?([^"]+)"?$')

KEYS_FILE_HEADER = """#/------------------!DOTENV_PRIVATE_KEYS!-------------------/
#/ private decryption keys. DO NOT commit to source control /
#/     [how it works](https://dotenvx.com/encryption)       /
#/----------------------------------------------------------/
"""


def env_name_from_file(file_name: str) -> str:
    """`.env.staging` -> `staging`, `.env` -> `root`."""
    if file_name == ENV_FILE_PREFIX:
        return ROOT_ENV_NAME
    return file_name[len(ENV_FILE_PREFIX) + 1 :]


def env_file_name(env_name: str) -> str:
    """`staging` -> `.env.staging`, `root` -> `.env`."""
    if env_name == ROOT_ENV_NAME:
        return ENV_FILE_PREFIX
    return f"{ENV_FILE_PREFIX}.{env_name}"


def private_key_name(env_name: str) -> str:
    """`staging` -> `DOTENV_PRIVATE_KEY_STAGING`, `root` -> `DOTENV_PRIVATE_KEY`."""
    if env_name == ROOT_ENV_NAME:
        return PRIVATE_KEY_PREFIX
    return f"{PRIVATE_KEY_PREFIX}_{re.sub(r'[^A-Za-z0-9]', '_', env_name).upper()}"


def env_name_from_key(key_name: str) -> str:
    """`DOTENV_PRIVATE_KEY_STAGING` -> `staging`, `DOTENV_PRIVATE_KEY` -> `root`."""
    if key_name == PRIVATE_KEY_PREFIX:
        return ROOT_ENV_NAME
    if not key_name.startswith(f"{PRIVATE_KEY_PREFIX}_"):
        raise ValueError(f"'{key_name}' is not a private key name.")
    return key_name[len(PRIVATE_KEY_PREFIX) + 1 :].lower()


def is_env_file_name(file_name: str) -> bool:
    if file_name != ENV_FILE_PREFIX and not file_name.startswith(f"{ENV_FILE_PREFIX}."):
        return False
    if file_name.endswith(EXCLUDED_SUFFIXES):
        return False
    return ".backup" not in file_name


def is_encrypted_content(content: str) -> bool:
    return any(marker in content for marker in ENCRYPTION_MARKERS)


def parse_variable_names(content: str) -> list[str]:
    """Returns the assigned variable names, skipping dotenvx's own keys."""
    names = []
    for line in content.splitlines():
        match = VARIABLE_LINE.match(line)
        if match and not match.group(1).startswith(RESERVED_VARIABLE_PREFIX):
            names.append(match.group(1))
    return names


def read_env_file(project_dir: str, file_name: str) -> EnvFile:
    path = os.path.join(project_dir, file_name)
    with open(path, encoding="utf-8") as f:
        content = f.read()
    return EnvFile(
        file=file_name,
        name=env_name_from_file(file_name),
        path=path,
        is_encrypted=is_encrypted_content(content),
        variables=parse_variable_names(content),
    )


def find_all_env_files(project_dir: str) -> list[EnvFile]:
    """Finds every environment file in ``project_dir``.

    Key stores, backups, examples and samples are left out. Scanning never
    fails: an unreadable directory gives an empty list and an unreadable
    file is skipped.
    """
    try:
        entries = sorted(os.listdir(project_dir))
    except OSError as e:
        _debug(f"Cannot list {project_dir}: {e}")
        return []

    env_files = []
    for file_name in entries:
        if not is_env_file_name(file_name):
            continue
        if not os.path.isfile(os.path.join(project_dir, file_name)):
            continue
        try:
            env_files.append(read_env_file(project_dir, file_name))
        except (OSError, UnicodeDecodeError) as e:
            _debug(f"Skipping unreadable {file_name}: {e}")
    _debug(f"Found env files: {[f.file for f in env_files]}")
    return env_files


def parse_private_keys(content: str) -> dict[str, str]:
    keys = {}
    for line in content.splitlines():
        match = PRIVATE_KEY_LINE.match(line.strip())
        if match:
            keys[match.group(1)] = match.group(2)
    return keys


def get_env_keys(project_dir: str) -> KeyStore:
    """Reads `.env.keys`. A missing or unreadable file is reported as not existing."""
    keys_path = os.path.join(project_dir, KEYS_FILE_NAME)
    if not os.path.exists(keys_path):
        return KeyStore(exists=False, path=keys_path)
    try:
        with open(keys_path, encoding="utf-8") as f:
            content = f.read()
    except (OSError, UnicodeDecodeError) as e:
        _debug(f"Cannot read {keys_path}: {e}")
        return KeyStore(exists=False, path=keys_path)
    return KeyStore(exists=True, keys=parse_private_keys(content), path=keys_path)


def write_text_atomic(path: str, content: str):
    """Writes ``content`` to ``path`` through a temp file and a rename."""
    directory = os.path.dirname(os.path.abspath(path))
    fd, tmp_path = tempfile.mkstemp(prefix=".dotenvx-deploy-", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        if os.path.exists(path):
            os.chmod(tmp_path, os.stat(path).st_mode & 0o777)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def backup_env_keys(project_dir: str) -> str | None:
    """Copies `.env.keys` to `.env.keys.backup.<epoch ms>` and returns the backup path."""
    keys_path = os.path.join(project_dir, KEYS_FILE_NAME)
    if not os.path.exists(keys_path):
        return None
    backup_path = os.path.join(project_dir, f"{KEYS_FILE_NAME}.backup.{int(time.time() * 1000)}")
    with open(keys_path, encoding="utf-8") as f:
        content = f.read()
    write_text_atomic(backup_path, content)
    os.chmod(backup_path, 0o600)
    return backup_path


def remove_private_key(project_dir: str, key_name: str) -> bool:
    """Removes exactly the ``key_name=`` line (and its `# .env...` comment) from `.env.keys`.

    Returns True if a line was removed.
    """
    keys_path = os.path.join(project_dir, KEYS_FILE_NAME)
    if not os.path.exists(keys_path):
        return False
    with open(keys_path, encoding="utf-8") as f:
        lines = f.read().split("\n")

    comment = f"# {env_file_name(env_name_from_key(key_name))}"
    kept: list[str] = []
    removed = False
    for line in lines:
        if line.startswith(f"{key_name}="):
            removed = True
            if kept and kept[-1].strip() == comment:
                kept.pop()
            continue
        kept.append(line)

    if removed:
        write_text_atomic(keys_path, "\n".join(kept))
    return removed


def merge_private_keys(project_dir: str, new_keys: dict[str, str]) -> str:
    """Updates or appends keys in `.env.keys`, creating it if needed. Returns the path."""
    keys_path = os.path.join(project_dir, KEYS_FILE_NAME)
    if os.path.exists(keys_path):
        with open(keys_path, encoding="utf-8") as f:
            content = f.read()
    else:
        content = KEYS_FILE_HEADER

    for key_name, value in new_keys.items():
        line = f'{key_name}="{value}"'
        pattern = re.compile(rf"^{re.escape(key_name)}=.*$", re.MULTILINE)
        if pattern.search(content):
            content = pattern.sub(lambda _m: line, content, count=1)
        else:
            if content and not content.endswith("\n"):
                content += "\n"
            content += f"\n# {env_file_name(env_name_from_key(key_name))}\n{line}\n"

    write_text_atomic(keys_path, content)
    os.chmod(keys_path, 0o600)
    return keys_path
