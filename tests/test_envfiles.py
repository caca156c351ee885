import os
import stat

import pytest

from dotenvx_deploy.envfiles import (
    KEYS_FILE_HEADER,
    backup_env_keys,
    env_file_name,
    env_name_from_file,
    env_name_from_key,
    find_all_env_files,
    get_env_keys,
    is_encrypted_content,
    is_env_file_name,
    merge_private_keys,
    parse_private_keys,
    parse_variable_names,
    private_key_name,
    remove_private_key,
    write_text_atomic,
)

KEYS_CONTENT = KEYS_FILE_HEADER + """
# .env.production
DOTENV_PRIVATE_KEY_PRODUCTION="prodkey"

# .env.staging
DOTENV_PRIVATE_KEY_STAGING="stagingkey"
"""


def create_file(tmp_path, name, content=""):
    file_path = tmp_path / name
    file_path.write_text(content)
    return file_path


@pytest.mark.parametrize(
    "env_name, file_name, key_name",
    [
        ("production", ".env.production", "DOTENV_PRIVATE_KEY_PRODUCTION"),
        ("staging", ".env.staging", "DOTENV_PRIVATE_KEY_STAGING"),
        ("root", ".env", "DOTENV_PRIVATE_KEY"),
    ],
)
def test_naming_round_trip(env_name, file_name, key_name):
    assert env_file_name(env_name) == file_name
    assert env_name_from_file(file_name) == env_name
    assert private_key_name(env_name) == key_name
    assert env_name_from_key(key_name) == env_name


def test_private_key_name_replaces_separators():
    assert private_key_name("ci-test") == "DOTENV_PRIVATE_KEY_CI_TEST"


def test_env_name_from_key_rejects_other_names():
    with pytest.raises(ValueError):
        env_name_from_key("DATABASE_URL")


@pytest.mark.parametrize(
    "file_name, expected",
    [
        (".env", True),
        (".env.production", True),
        (".env.local", True),
        (".env.keys", False),
        (".env.example", False),
        (".env.sample", False),
        (".env.keys.backup.1700000000000", False),
        (".envrc", False),
        ("env.production", False),
    ],
)
def test_is_env_file_name(file_name, expected):
    assert is_env_file_name(file_name) is expected


def test_is_encrypted_content():
    assert is_encrypted_content('DOTENV_PUBLIC_KEY_PRODUCTION="03ab"\nHELLO="encrypted:BDe..."')
    assert is_encrypted_content('HELLO="encrypted:BDe..."')
    assert not is_encrypted_content('HELLO="world"')


def test_parse_variable_names_skips_dotenvx_entries():
    content = '#/---header---/\nDOTENV_PUBLIC_KEY="03ab"\n# comment\nHELLO="x"\nAPI_KEY=y\nlowercase=z\n'
    assert parse_variable_names(content) == ["HELLO", "API_KEY"]


def test_find_all_env_files(tmp_path):
    create_file(tmp_path, ".env.production", 'DOTENV_PUBLIC_KEY_PRODUCTION="03ab"\nHELLO="encrypted:abc"\n')
    create_file(tmp_path, ".env.staging", 'HELLO="world"\nAPI=1\n')
    create_file(tmp_path, ".env.keys", KEYS_CONTENT)
    create_file(tmp_path, ".env.example", "HELLO=\n")
    create_file(tmp_path, ".env.keys.backup.123", KEYS_CONTENT)
    create_file(tmp_path, "package.json", "{}")
    (tmp_path / ".env.d").mkdir()

    env_files = find_all_env_files(str(tmp_path))

    assert [f.file for f in env_files] == [".env.production", ".env.staging"]
    production, staging = env_files
    assert production.name == "production"
    assert production.is_encrypted is True
    assert production.variables == ["HELLO"]
    assert staging.is_encrypted is False
    assert staging.var_count == 2
    assert staging.path == os.path.join(str(tmp_path), ".env.staging")


def test_find_all_env_files_missing_directory(tmp_path):
    assert find_all_env_files(str(tmp_path / "missing")) == []


def test_find_all_env_files_skips_unreadable_file(tmp_path):
    create_file(tmp_path, ".env.production", 'HELLO="world"\n')
    (tmp_path / ".env.binary").write_bytes(b"\xff\xfe\x00bad")

    env_files = find_all_env_files(str(tmp_path))

    assert [f.file for f in env_files] == [".env.production"]


def test_parse_private_keys_includes_root_key():
    content = 'DOTENV_PRIVATE_KEY="rootkey"\nDOTENV_PRIVATE_KEY_PRODUCTION=prodkey\nOTHER="x"\n'
    assert parse_private_keys(content) == {
        "DOTENV_PRIVATE_KEY": "rootkey",
        "DOTENV_PRIVATE_KEY_PRODUCTION": "prodkey",
    }


def test_parse_private_keys_skips_empty_values():
    assert parse_private_keys('DOTENV_PRIVATE_KEY_STAGING=""\nDOTENV_PRIVATE_KEY_LOCAL=\n') == {}


def test_get_env_keys(tmp_path):
    create_file(tmp_path, ".env.keys", KEYS_CONTENT)
    key_store = get_env_keys(str(tmp_path))
    assert key_store.exists is True
    assert len(key_store) == 2
    assert key_store.get("DOTENV_PRIVATE_KEY_STAGING") == "stagingkey"
    assert "DOTENV_PRIVATE_KEY_DEVELOPMENT" not in key_store
    assert "prodkey" not in repr(key_store)


def test_get_env_keys_missing(tmp_path):
    key_store = get_env_keys(str(tmp_path))
    assert key_store.exists is False
    assert key_store.keys == {}


def test_write_text_atomic_keeps_mode(tmp_path):
    path = create_file(tmp_path, ".env.production", "old")
    os.chmod(path, 0o640)

    write_text_atomic(str(path), "new")

    assert path.read_text() == "new"
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o640
    assert [p.name for p in tmp_path.iterdir()] == [".env.production"]


def test_backup_env_keys(tmp_path):
    create_file(tmp_path, ".env.keys", KEYS_CONTENT)

    backup_path = backup_env_keys(str(tmp_path))

    assert os.path.basename(backup_path).startswith(".env.keys.backup.")
    with open(backup_path) as f:
        assert f.read() == KEYS_CONTENT
    assert stat.S_IMODE(os.stat(backup_path).st_mode) == 0o600


def test_backup_env_keys_without_store(tmp_path):
    assert backup_env_keys(str(tmp_path)) is None


def test_remove_private_key(tmp_path):
    path = create_file(tmp_path, ".env.keys", KEYS_CONTENT)

    assert remove_private_key(str(tmp_path), "DOTENV_PRIVATE_KEY_PRODUCTION") is True

    content = path.read_text()
    assert "DOTENV_PRIVATE_KEY_PRODUCTION" not in content
    assert "# .env.production" not in content
    assert 'DOTENV_PRIVATE_KEY_STAGING="stagingkey"' in content


def test_remove_private_key_matches_exact_name(tmp_path):
    path = create_file(
        tmp_path,
        ".env.keys",
        'DOTENV_PRIVATE_KEY_PROD="a"\nDOTENV_PRIVATE_KEY_PRODUCTION="b"\n',
    )

    assert remove_private_key(str(tmp_path), "DOTENV_PRIVATE_KEY_PROD") is True
    assert path.read_text() == 'DOTENV_PRIVATE_KEY_PRODUCTION="b"\n'
    assert remove_private_key(str(tmp_path), "DOTENV_PRIVATE_KEY_PROD") is False


def test_merge_private_keys_replaces_and_appends(tmp_path):
    create_file(tmp_path, ".env.keys", KEYS_CONTENT)

    merge_private_keys(
        str(tmp_path),
        {"DOTENV_PRIVATE_KEY_STAGING": "newstaging", "DOTENV_PRIVATE_KEY_DEVELOPMENT": "devkey"},
    )

    keys = get_env_keys(str(tmp_path)).keys
    assert keys == {
        "DOTENV_PRIVATE_KEY_PRODUCTION": "prodkey",
        "DOTENV_PRIVATE_KEY_STAGING": "newstaging",
        "DOTENV_PRIVATE_KEY_DEVELOPMENT": "devkey",
    }
    assert "# .env.development\n" in (tmp_path / ".env.keys").read_text()


def test_merge_private_keys_creates_store(tmp_path):
    path = merge_private_keys(str(tmp_path), {"DOTENV_PRIVATE_KEY": "rootkey"})

    with open(path) as f:
        content = f.read()
    assert content.startswith(KEYS_FILE_HEADER)
    assert '# .env\nDOTENV_PRIVATE_KEY="rootkey"\n' in content
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
