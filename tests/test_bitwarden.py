import base64
import json
import subprocess
from unittest.mock import patch

import pytest

from dotenvx_deploy.bitwarden import (
    SECURE_NOTE_TYPE,
    BitwardenClient,
    encode_payload,
    new_item_payload,
    parse_status,
    setup_instructions,
    updated_item_payload,
)
from dotenvx_deploy.models import VaultItem
from dotenvx_deploy.runner import CommandError


def decode(encoded):
    return json.loads(base64.b64decode(encoded))


def completed(stdout=""):
    return subprocess.CompletedProcess(args=[], returncode=0, stdout=stdout, stderr="")


def fields_of(payload):
    return {f["name"]: f["value"] for f in payload["fields"]}


def test_encode_payload():
    assert decode(encode_payload({"name": "dotenvx-keys"})) == {"name": "dotenvx-keys"}


def test_parse_status():
    assert parse_status('{"serverUrl": null, "status": "locked"}') == "locked"
    assert parse_status("not json") is None
    assert parse_status("[]") is None


def test_new_item_payload():
    payload = new_item_payload(
        "folder1", "my-app/production", "prodkey", "production", "my-app", timestamp="2024-01-01T00:00:00.000Z"
    )
    assert payload["type"] == SECURE_NOTE_TYPE
    assert payload["folderId"] == "folder1"
    assert payload["name"] == "my-app/production"
    assert payload["notes"] == "prodkey"
    assert fields_of(payload) == {
        "DOTENV_PRIVATE_KEY": "prodkey",
        "environment": "production",
        "project": "my-app",
        "created": "2024-01-01T00:00:00.000Z",
    }
    assert all(f["type"] == 0 for f in payload["fields"])


def test_new_item_payload_with_note_and_version():
    payload = new_item_payload("folder1", "x/staging/v2", "k", "staging", None, note="before migration", version="v2")
    fields = fields_of(payload)
    assert fields["project"] == "unknown"
    assert fields["note"] == "before migration"
    assert fields["version"] == "v2"
    assert fields["created"].endswith("Z")


def test_updated_item_payload_keeps_created_and_note():
    existing = VaultItem.from_dict(
        {
            "id": "item1",
            "name": "my-app/production",
            "folderId": "folder1",
            "type": 2,
            "notes": "oldkey",
            "fields": [
                {"name": "DOTENV_PRIVATE_KEY", "value": "oldkey", "type": 0},
                {"name": "created", "value": "2024-01-01T00:00:00.000Z", "type": 0},
                {"name": "note", "value": "first", "type": 0},
            ],
        }
    )

    payload = updated_item_payload(
        existing, "newkey", "production", "my-app", timestamp="2024-03-01T00:00:00.000Z"
    )

    assert payload["id"] == "item1"
    assert payload["folderId"] == "folder1"
    assert payload["notes"] == "newkey"
    assert fields_of(payload) == {
        "DOTENV_PRIVATE_KEY": "newkey",
        "environment": "production",
        "project": "my-app",
        "created": "2024-01-01T00:00:00.000Z",
        "updated": "2024-03-01T00:00:00.000Z",
        "note": "first",
    }


@pytest.mark.parametrize(
    "status, available, expected",
    [
        (None, False, "npm install -g @bitwarden/cli"),
        ("unauthenticated", True, "bw login"),
        ("locked", True, "Your vault is locked"),
        ("weird", True, "Current status: weird"),
    ],
)
def test_setup_instructions(status, available, expected):
    lines = setup_instructions(status, available, "bw-save")
    assert any(expected in line for line in lines)


@patch("dotenvx_deploy.runner.subprocess.run")
def test_status_unlocked(mock_run):
    mock_run.side_effect = [completed("2024.1.0"), completed('{"status": "unlocked"}')]
    status = BitwardenClient().status()
    assert status.available is True
    assert status.logged_in is True


@patch("dotenvx_deploy.runner.subprocess.run")
def test_status_not_installed(mock_run):
    mock_run.side_effect = FileNotFoundError()
    status = BitwardenClient().status()
    assert status.available is False
    assert status.logged_in is False


@patch("dotenvx_deploy.runner.subprocess.run")
def test_get_or_create_folder_existing(mock_run):
    mock_run.return_value = completed(json.dumps([{"id": "f0", "name": "dotenvx-keys-old"}, {"id": "f1", "name": "dotenvx-keys"}]))
    assert BitwardenClient().get_or_create_folder("dotenvx-keys") == ("f1", False)
    assert mock_run.call_count == 1


@patch("dotenvx_deploy.runner.subprocess.run")
def test_get_or_create_folder_creates(mock_run):
    mock_run.side_effect = [completed("[]"), completed(json.dumps({"id": "f2", "name": "dotenvx-keys"}))]

    assert BitwardenClient().get_or_create_folder("dotenvx-keys") == ("f2", True)

    create_args = mock_run.call_args.args[0]
    assert create_args[:3] == ["bw", "create", "folder"]
    assert decode(create_args[3]) == {"name": "dotenvx-keys"}


@patch("dotenvx_deploy.runner.subprocess.run")
def test_list_items(mock_run):
    mock_run.return_value = completed(
        json.dumps([{"id": "1", "name": "my-app/production"}, {"id": "2", "name": "my-app/staging"}])
    )
    items = BitwardenClient().list_items("f1")
    assert [i.environment for i in items] == ["production", "staging"]
    assert mock_run.call_args.args[0] == ["bw", "list", "items", "--folderid", "f1"]


@patch("dotenvx_deploy.runner.subprocess.run")
def test_find_item_exact_name(mock_run):
    mock_run.return_value = completed(
        json.dumps([{"id": "1", "name": "my-app/production/v2"}, {"id": "2", "name": "my-app/production"}])
    )
    item = BitwardenClient().find_item("f1", "my-app/production")
    assert item.item_id == "2"


@patch("dotenvx_deploy.runner.subprocess.run")
def test_find_item_failure_is_not_found(mock_run):
    mock_run.side_effect = subprocess.CalledProcessError(1, ["bw"], stderr="boom")
    assert BitwardenClient().find_item("f1", "my-app/production") is None


@patch("dotenvx_deploy.runner.subprocess.run")
def test_unexpected_output_raises(mock_run):
    mock_run.return_value = completed("? Master password: ")
    with pytest.raises(CommandError, match="Unexpected output"):
        BitwardenClient().list_items("f1")


@patch("dotenvx_deploy.runner.subprocess.run")
def test_edit_item(mock_run):
    mock_run.return_value = completed("{}")
    BitwardenClient(command=["/opt/bw"]).edit_item("item1", {"name": "x"})
    args = mock_run.call_args.args[0]
    assert args[:4] == ["/opt/bw", "edit", "item", "item1"]
    assert decode(args[4]) == {"name": "x"}


@patch("dotenvx_deploy.runner.subprocess.run")
def test_create_and_edit_failures_hide_payload(mock_run):
    mock_run.side_effect = subprocess.CalledProcessError(1, ["bw"], stderr="Server error")
    payload = new_item_payload("f1", "my-app/production", "supersecretprodkey", "production", "my-app")
    encoded = encode_payload(payload)

    with pytest.raises(CommandError) as create_error:
        BitwardenClient().create_item(payload)
    with pytest.raises(CommandError) as edit_error:
        BitwardenClient().edit_item("item1", payload)

    for error in (create_error.value, edit_error.value):
        assert encoded not in str(error)
        assert "supersecretprodkey" not in str(error)
    assert "bw create item '****'" in str(create_error.value)
    assert "bw edit item item1 '****'" in str(edit_error.value)
