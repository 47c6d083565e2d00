"""Tests for configuration loading."""

import pytest

from plyra_governor.config.loader import load_config, load_config_from_dict
from plyra_governor.config.schema import GovernorConfig
from plyra_governor.exceptions import ConfigFileNotFoundError, ConfigValidationError


class TestLoadConfig:
    def test_defaults(self):
        config = load_config_from_dict({})
        assert isinstance(config, GovernorConfig)
        assert config.policy_engine.no_match_action == "queue"
        assert config.sidecar.port == 23847
        assert config.observability.exporters == ["stdout"]

    def test_yaml_overrides_merge_with_defaults(self, tmp_path):
        path = tmp_path / "governor_config.yaml"
        path.write_text(
            "budget:\n"
            "  default_model: claude-haiku-3\n"
            "policies:\n"
            "  - name: Review bash\n"
            "    matcher: Bash\n"
            "    action: queue\n"
            "    priority: 10\n"
            "queue:\n"
            "  pending_ttl_seconds: 600\n"
        )
        config = load_config(str(path))
        assert config.budget.default_model == "claude-haiku-3"
        assert config.budget.ops_per_minute == 2.0
        assert config.policies[0].priority == 10
        assert config.queue.pending_ttl_seconds == 600

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigFileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(str(path)).version == "1.0"

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("budget: [unclosed\n")
        with pytest.raises(ConfigValidationError):
            load_config(str(path))

    def test_non_mapping_root(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigValidationError):
            load_config(str(path))

    @pytest.mark.parametrize(
        "data",
        [
            {"policy_engine": {"no_match_action": "maybe"}},
            {"policy_engine": {"min_priority": 5, "max_priority": 1}},
            {"policies": [{"name": "x", "matcher": "*", "action": "allow"}]},
            {"budget": {"default_warning_threshold": 1.5}},
            {"sidecar": {"port": 70000}},
        ],
    )
    def test_validation_errors(self, data):
        with pytest.raises(ConfigValidationError):
            load_config_from_dict(data)


class TestGovernorRules:
    def test_unknown_section_is_named(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            load_config_from_dict({"budgets": {"default_model": "x"}})
        assert "budgets" in str(exc_info.value)

    def test_section_must_be_a_mapping(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            load_config_from_dict({"sidecar": 8080})
        assert "'sidecar' must be a mapping" in str(exc_info.value)

    def test_duplicate_policy_names(self):
        policy = {"name": "bash", "matcher": "Bash", "action": "queue"}
        with pytest.raises(ConfigValidationError) as exc_info:
            load_config_from_dict({"policies": [policy, dict(policy)]})
        assert "bash" in str(exc_info.value)

    def test_null_section_keeps_defaults(self):
        assert load_config_from_dict({"queue": None}).queue.pending_ttl_seconds is None

    def test_error_message_names_the_field(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            load_config_from_dict({"sidecar": {"port": 70000}})
        assert "sidecar.port" in str(exc_info.value)

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "governor_config.yaml"
        path.write_text("sidecar:\n  port: 9000\n")
        monkeypatch.setenv("PLYRA_GOVERNOR_PORT", "9100")
        monkeypatch.setenv("PLYRA_GOVERNOR_DB", str(tmp_path / "gov.db"))

        config = load_config(str(path))
        assert config.sidecar.port == 9100
        assert config.storage.db_path == str(tmp_path / "gov.db")

    def test_bad_environment_value(self, monkeypatch):
        monkeypatch.setenv("PLYRA_GOVERNOR_PORT", "not-a-port")
        with pytest.raises(ConfigValidationError):
            load_config_from_dict({})
