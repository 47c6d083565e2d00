"""Tests for the plyra-governor command line."""

import json

import pytest

from plyra_governor import __version__
from plyra_governor.cli import main


@pytest.fixture
def db(tmp_path):
    return str(tmp_path / "governor.db")


class TestCli:
    def test_version_flag(self, capsys):
        main(["--version"])
        assert capsys.readouterr().out.strip() == f"plyra-governor {__version__}"

    def test_version_command(self, capsys):
        main(["version"])
        assert __version__ in capsys.readouterr().out

    def test_no_command_prints_help(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 1
        assert "usage: plyra-governor" in capsys.readouterr().out

    def test_install_defaults_is_idempotent(self, db, capsys):
        main(["install-defaults", "--db", db])
        assert "Allow Read Operations" in capsys.readouterr().out
        main(["install-defaults", "--db", db])
        assert "already installed" in capsys.readouterr().out

    def test_check_allows_read(self, db, capsys):
        payload = {
            "hook_event_name": "PreToolUse",
            "session_id": "s-1",
            "tool_name": "Read",
            "tool_input": {"file_path": "src/a.py"},
        }
        main(["check", "--db", db, "--payload", json.dumps(payload)])
        assert json.loads(capsys.readouterr().out) == {"decision": "allow"}

    def test_check_refusal_exits_nonzero(self, db, capsys, tmp_path):
        payload_file = tmp_path / "payload.json"
        payload_file.write_text(
            json.dumps(
                {
                    "hook_event_name": "PreToolUse",
                    "session_id": "s-1",
                    "tool_name": "Bash",
                    "tool_input": {"command": "make"},
                }
            )
        )
        with pytest.raises(SystemExit) as exc_info:
            main(["check", "--db", db, "--payload", f"@{payload_file}"])
        assert exc_info.value.code == 2
        out = json.loads(capsys.readouterr().out)
        assert out["decision"] == "deny"
        assert "queue_item_id" in out

    def test_check_rejects_bad_json(self, db, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["check", "--db", db, "--payload", "{nope"])
        assert exc_info.value.code == 1
        assert "Invalid JSON" in capsys.readouterr().err

    def test_check_rejects_payload_without_event_type(self, db, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["check", "--db", db, "--payload", '{"session_id": "s"}'])
        assert exc_info.value.code == 1

    def test_status_lists_state(self, db, capsys):
        main(["check", "--db", db, "--payload", '{"hook_event_name": "Stop"}'])
        capsys.readouterr()
        main(["status", "--db", db])
        out = capsys.readouterr().out
        assert "Budgets (0):" in out
        assert "Policies (6):" in out
        assert "Pending approvals: 0" in out

    def test_config_file(self, db, tmp_path, capsys):
        config = tmp_path / "governor_config.yaml"
        config.write_text("policy_engine:\n  install_defaults: false\n")
        main(["status", "--config", str(config), "--db", db])
        assert "Policies (0):" in capsys.readouterr().out
