import json

import pytest
from typer.testing import CliRunner

from groupwarden.cli.commands import app
from groupwarden.identity.store import IdentifierMappingStore

runner = CliRunner()


@pytest.fixture
def home(tmp_path, monkeypatch):
    monkeypatch.setenv("GROUPWARDEN_HOME", str(tmp_path))
    mapping_file = tmp_path / "data" / "lid_mappings.json"
    (tmp_path / "config.json").write_text(
        json.dumps({"identity": {"mappingFile": str(mapping_file)}}),
        encoding="utf-8",
    )
    return tmp_path


def test_mappings_seed_writes_configured_seeds(home) -> None:
    result = runner.invoke(app, ["mappings", "seed"])

    assert result.exit_code == 0
    assert "2 mapping(s) written" in result.stdout
    store = IdentifierMappingStore(home / "data" / "lid_mappings.json")
    assert store.get_phone_for_identifier("59318229561477@lid") == "6285753436471"


def test_mappings_seed_single_pair_and_show(home) -> None:
    seeded = runner.invoke(app, ["mappings", "seed", "-i", "11122233344455@lid", "-p", "+62 812 3456 7890"])
    shown = runner.invoke(app, ["mappings", "show"])

    assert seeded.exit_code == 0
    assert "11122233344455@lid" in shown.stdout
    assert "6281234567890" in shown.stdout


def test_mappings_seed_rejects_half_a_pair(home) -> None:
    result = runner.invoke(app, ["mappings", "seed", "-i", "11122233344455@lid"])

    assert result.exit_code == 1


def test_mappings_clear_group_without_entries(home) -> None:
    result = runner.invoke(app, ["mappings", "clear-group", "120363000000000001@g.us"])

    assert result.exit_code == 0
    assert "No mappings cached" in result.stdout


def test_add_without_numbers_exits_before_connecting(home) -> None:
    result = runner.invoke(app, ["add", "120363000000000001@g.us", "-p", "12345"])

    assert result.exit_code == 1
    assert "No valid phone numbers" in result.stdout
