from typing import Any

ROOT_ENV_NAME = "root"
ENV_FILE_PREFIX = ".env"
KEYS_FILE_NAME = ".env.keys"
PRIVATE_KEY_PREFIX = "DOTENV_PRIVATE_KEY"


class EnvFile:
    """A scanned environment file, e.g. `.env.production`."""

    def __init__(
        self,
        file: str,
        name: str,
        path: str,
        is_encrypted: bool = False,
        variables: list[str] | None = None,
    ):
        self.file: str = file
        self.name: str = name
        self.path: str = path
        self.is_encrypted: bool = is_encrypted
        self.variables: list[str] = variables if variables is not None else []

    @property
    def var_count(self) -> int:
        return len(self.variables)

    def to_dict(self) -> dict[str, Any]:
        """Converts the EnvFile object to a dictionary."""
        return {
            "file": self.file,
            "name": self.name,
            "path": self.path,
            "is_encrypted": self.is_encrypted,
            "variables": list(self.variables),
        }

    def __eq__(self, other):
        return isinstance(other, EnvFile) and self.to_dict() == other.to_dict()

    def __repr__(self):
        """Returns readable representation."""
        return f"EnvFile(file='{self.file}', name='{self.name}', encrypted={self.is_encrypted})"


class KeyStore:
    """Private keys parsed from a `.env.keys` file."""

    def __init__(self, exists: bool = False, keys: dict[str, str] | None = None, path: str | None = None):
        self.exists: bool = exists
        self.keys: dict[str, str] = keys if keys is not None else {}
        self.path: str | None = path

    def get(self, key_name: str) -> str | None:
        return self.keys.get(key_name)

    def __contains__(self, key_name):
        return key_name in self.keys

    def __len__(self):
        return len(self.keys)

    def __repr__(self):
        """Returns readable representation. Values are never shown."""
        return f"KeyStore(exists={self.exists}, keys={sorted(self.keys)})"


class Project:
    """What `package.json` says about the project."""

    TYPES = ["nextjs", "vite", "unknown"]

    def __init__(
        self,
        type: str = "unknown",
        version: str | None = None,
        framework: str | None = None,
        name: str | None = None,
    ):
        if type not in self.TYPES:
            raise ValueError(f"Invalid project type. Must be one of {self.TYPES}")
        self.type: str = type
        self.version: str | None = version
        self.framework: str | None = framework
        self.name: str | None = name

    @property
    def is_known(self) -> bool:
        return self.type != "unknown"

    def __repr__(self):
        """Returns readable representation."""
        return f"Project(type='{self.type}', framework='{self.framework}', name='{self.name}')"


class VaultItem:
    """A Bitwarden secure note holding one private key.

    The item name follows ``<project>/<environment>[/<version>]``. Everything
    else is carried in custom fields.
    """

    def __init__(
        self,
        name: str,
        item_id: str | None = None,
        notes: str | None = None,
        fields: dict[str, str] | None = None,
        raw: dict[str, Any] | None = None,
    ):
        self.name: str = name
        self.item_id: str | None = item_id
        self.notes: str | None = notes
        self.fields: dict[str, str] = fields if fields is not None else {}
        self.raw: dict[str, Any] = raw if raw is not None else {}

    @property
    def project(self) -> str:
        return self.fields.get("project") or self.name.split("/")[0]

    @property
    def environment(self) -> str:
        """The environment field, falling back to the second name segment."""
        if self.fields.get("environment"):
            return self.fields["environment"]
        parts = self.name.split("/")
        return parts[1] if len(parts) > 1 else "unknown"

    @property
    def version(self) -> str | None:
        if self.fields.get("version"):
            return self.fields["version"]
        parts = self.name.split("/")
        return parts[2] if len(parts) > 2 else None

    @property
    def key_value(self) -> str | None:
        return self.fields.get("DOTENV_PRIVATE_KEY") or self.notes or None

    @property
    def timestamp(self) -> str | None:
        return self.fields.get("updated") or self.fields.get("created")

    @classmethod
    def from_dict(cls, data: dict[str, Any]):
        """Creates a VaultItem from a `bw list items` JSON entry."""
        fields = {f.get("name"): f.get("value") for f in data.get("fields") or [] if f.get("name")}
        return cls(
            name=data.get("name", ""),
            item_id=data.get("id"),
            notes=data.get("notes"),
            fields=fields,
            raw=data,
        )

    def __repr__(self):
        """Returns readable representation."""
        return f"VaultItem(name='{self.name}', id='{self.item_id}')"


class ItemResult:
    """Outcome of one item in a batch command."""

    def __init__(self, item: Any, ok: bool, value: Any = None, error: str | None = None):
        self.item = item
        self.ok = ok
        self.value = value
        self.error = error

    def __repr__(self):
        status = "ok" if self.ok else f"failed: {self.error}"
        return f"ItemResult({self.item!r}, {status})"
