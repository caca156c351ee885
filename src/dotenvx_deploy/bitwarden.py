import base64
import json
from datetime import datetime, timezone
from typing import Any

from .config import DEFAULT_COMMANDS
from .models import VaultItem
from .runner import CommandError, CommandResult, _debug, run

SECURE_NOTE_TYPE = 2
TEXT_FIELD_TYPE = 0

BW_LOGIN = "bw login"
BW_UNLOCK = "export BW_SESSION=$(bw unlock --raw)"


def encode_payload(data: dict[str, Any]) -> str:
    """JSON then base64, the encoding `bw create` and `bw edit` expect."""
    return base64.b64encode(json.dumps(data).encode("utf-8")).decode("ascii")


def parse_status(output: str) -> str | None:
    """Returns the `status` value of `bw status` JSON output."""
    try:
        data = json.loads(output)
    except ValueError:
        return None
    return data.get("status") if isinstance(data, dict) else None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_fields(
    key_value: str,
    env_name: str,
    project: str | None,
    timestamp_field: str,
    timestamp: str,
    note: str | None = None,
    version: str | None = None,
    created: str | None = None,
) -> list[dict[str, Any]]:
    """Custom fields of a key item. ``created`` is kept when updating an item."""
    values = [
        ("DOTENV_PRIVATE_KEY", key_value),
        ("environment", env_name),
        ("project", project or "unknown"),
    ]
    if created and timestamp_field != "created":
        values.append(("created", created))
    values.append((timestamp_field, timestamp))
    if note:
        values.append(("note", note))
    if version:
        values.append(("version", version))
    return [{"name": name, "value": value, "type": TEXT_FIELD_TYPE} for name, value in values]


def new_item_payload(
    folder_id: str,
    item_name: str,
    key_value: str,
    env_name: str,
    project: str | None,
    note: str | None = None,
    version: str | None = None,
    timestamp: str | None = None,
) -> dict[str, Any]:
    return {
        "organizationId": None,
        "folderId": folder_id,
        "type": SECURE_NOTE_TYPE,
        "name": item_name,
        "notes": key_value,
        "secureNote": {"type": 0},
        "fields": build_fields(key_value, env_name, project, "created", timestamp or _now(), note, version),
    }


def updated_item_payload(
    existing: VaultItem,
    key_value: str,
    env_name: str,
    project: str | None,
    note: str | None = None,
    version: str | None = None,
    timestamp: str | None = None,
) -> dict[str, Any]:
    payload = dict(existing.raw)
    payload["notes"] = key_value
    payload["fields"] = build_fields(
        key_value,
        env_name,
        project,
        "updated",
        timestamp or _now(),
        note or existing.fields.get("note"),
        version or existing.fields.get("version"),
        created=existing.fields.get("created"),
    )
    return payload


def setup_instructions(status: str | None, available: bool, command_name: str) -> list[str]:
    """Steps to get the Bitwarden CLI ready, depending on where the user is stuck."""
    rerun = f"dotenvx-deploy {command_name}"
    if not available:
        return [
            "1. Install Bitwarden CLI:",
            "   npm install -g @bitwarden/cli   (or: brew install bitwarden-cli)",
            f"2. Login to your Bitwarden account:  {BW_LOGIN}",
            f"3. Unlock your vault and set the session:  {BW_UNLOCK}",
            f"4. Run this command again:  {rerun}",
        ]
    if status == "unauthenticated":
        return [
            f"1. Login to your Bitwarden account:  {BW_LOGIN}",
            f"2. Unlock your vault and set the session:  {BW_UNLOCK}",
            f"3. Run this command again:  {rerun}",
        ]
    if status == "locked":
        return [
            f"Your vault is locked. Unlock it:  {BW_UNLOCK}",
            f"Then run this command again:  {rerun}",
        ]
    return [
        f"Current status: {status}",
        "Try logging in again:",
        f"   bw logout && {BW_LOGIN}",
        f"   {BW_UNLOCK}",
    ]


class BitwardenStatus:
    def __init__(self, available: bool, status: str | None = None):
        self.available = available
        self.status = status

    @property
    def logged_in(self) -> bool:
        return self.status == "unlocked"

    def __repr__(self):
        return f"BitwardenStatus(available={self.available}, status='{self.status}')"


class BitwardenClient:
    """Wrapper over the Bitwarden CLI. The session comes from BW_SESSION in the environment."""

    def __init__(self, command: list[str] | None = None):
        self.command = command or DEFAULT_COMMANDS["bw_command"]

    def _run(self, args: list[str], silent: bool = False, secret: tuple[int, ...] = ()) -> CommandResult:
        """Runs bw. Positions in ``secret`` (relative to ``args``) are masked in errors and debug output."""
        offset = len(self.command)
        return run([*self.command, *args], silent=silent, redact=[offset + i for i in secret])

    def _json(self, args: list[str], silent: bool = False):
        output = self._run(args, silent=silent).stdout
        if not output.strip():
            return []
        try:
            return json.loads(output)
        except ValueError as e:
            raise CommandError([*self.command, *args], 0, f"Unexpected output: {output[:200]}") from e

    def status(self) -> BitwardenStatus:
        try:
            self._run(["--version"])
        except CommandError:
            return BitwardenStatus(available=False)
        try:
            output = self._run(["status"]).stdout
        except CommandError:
            return BitwardenStatus(available=True)
        status = parse_status(output)
        _debug(f"Bitwarden status: {status}")
        return BitwardenStatus(available=True, status=status)

    def sync(self) -> CommandResult:
        return self._run(["sync"])

    def find_folder(self, name: str) -> str | None:
        folders = self._json(["list", "folders", "--search", name])
        folder = next((f for f in folders if f.get("name") == name), None)
        return folder.get("id") if folder else None

    def create_folder(self, name: str) -> str:
        created = self._json(["create", "folder", encode_payload({"name": name})])
        return created["id"]

    def get_or_create_folder(self, name: str) -> tuple[str, bool]:
        """Returns the folder id and whether it had to be created."""
        folder_id = self.find_folder(name)
        if folder_id:
            return folder_id, False
        return self.create_folder(name), True

    def list_items(self, folder_id: str) -> list[VaultItem]:
        return [VaultItem.from_dict(item) for item in self._json(["list", "items", "--folderid", folder_id])]

    def find_item(self, folder_id: str, item_name: str) -> VaultItem | None:
        items = self._json(["list", "items", "--search", item_name, "--folderid", folder_id], silent=True)
        return next((VaultItem.from_dict(i) for i in items if i.get("name") == item_name), None)

    def create_item(self, payload: dict[str, Any]) -> CommandResult:
        return self._run(["create", "item", encode_payload(payload)], secret=(2,))

    def edit_item(self, item_id: str, payload: dict[str, Any]) -> CommandResult:
        return self._run(["edit", "item", item_id, encode_payload(payload)], secret=(3,))
