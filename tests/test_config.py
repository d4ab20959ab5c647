"""
Tests for Configuration and Runner
==================================
Tests for YAML/environment configuration loading and the command-line runner.
"""

import pytest
import yaml

from parkalarm.alarms import AlarmStore
from parkalarm.config import ENV_OVERRIDES, EngineConfig, load_config
from parkalarm.runner import main
from parkalarm.utils import PROJECT_ROOT


@pytest.fixture
def config_file(temp_dir):
    def write(data) -> str:
        path = temp_dir / "alarms.yaml"
        path.write_text(yaml.safe_dump(data))
        return str(path)
    return write


class TestLoadConfig:
    """Tests for load_config."""

    def test_missing_file_uses_defaults(self, temp_dir):
        config = load_config(temp_dir / "missing.yaml", environ={})
        defaults = EngineConfig()

        assert config.db_path == defaults.db_path
        assert config.tick_interval_seconds == 60
        assert config.telegram_bot_token is None
        assert config.default_webhook_timeout_ms == 30000
        assert config.log_level == "INFO"

    def test_yaml_values(self, config_file):
        path = config_file({
            "database": {"path": "/tmp/a.db", "source_path": "/tmp/b.db"},
            "scheduler": {"tick_interval_seconds": 15},
            "telegram": {"default_chat_id": -100123},
            "announcement": {"command": "/usr/local/bin/say", "timeout_seconds": 5},
            "webhook": {"timeout_ms": 2000},
            "notifications": {
                "email_recipient": "ops@example.com",
                "smtp": {"smtp_server": "smtp.example.com", "from_address": "alarms@example.com"},
            },
            "logging": {"level": "debug"},
        })

        config = load_config(path, environ={})

        assert config.db_path == "/tmp/a.db"
        assert config.source_db_path == "/tmp/b.db"
        assert config.tick_interval_seconds == 15.0
        assert config.telegram_default_chat_id == "-100123"
        assert config.announce_command == "/usr/local/bin/say"
        assert config.announce_timeout_seconds == 5.0
        assert config.default_webhook_timeout_ms == 2000
        assert config.email_recipient == "ops@example.com"
        assert config.smtp.name == "email"
        assert config.smtp.smtp_server == "smtp.example.com"
        assert config.twilio is None
        assert config.log_level == "DEBUG"

    def test_environment_overrides_yaml(self, config_file):
        path = config_file({"database": {"path": "/tmp/a.db"}, "telegram": {"default_chat_id": "1"}})

        config = load_config(path, environ={
            "ALARM_DB_PATH": "/srv/alarms.db",
            "TELEGRAM_BOT_TOKEN": "123:abc",
            "TELEGRAM_ALERT_CHAT_ID": "",
            "ALARM_LOG_LEVEL": "warning",
        })

        assert config.db_path == "/srv/alarms.db"
        assert config.telegram_bot_token == "123:abc"
        # Empty variables do not clear configured values
        assert config.telegram_default_chat_id == "1"
        assert config.log_level == "WARNING"

    def test_relative_paths_resolve_against_project_root(self, config_file, temp_dir, monkeypatch):
        monkeypatch.chdir(temp_dir)
        path = config_file({"database": {"path": "data/x.db", "source_path": "data/y.db"}})

        config = load_config(path, environ={"ALARM_SOURCE_DB_PATH": "data/z.db"})

        assert config.db_path == str(PROJECT_ROOT / "data" / "x.db")
        assert config.source_db_path == str(PROJECT_ROOT / "data" / "z.db")

    def test_empty_file(self, temp_dir):
        path = temp_dir / "alarms.yaml"
        path.write_text("")
        assert load_config(path, environ={}).db_path == EngineConfig().db_path

    def test_non_mapping_rejected(self, config_file):
        path = config_file(["not", "a", "mapping"])
        with pytest.raises(ValueError, match="mapping"):
            load_config(path, environ={})


class TestRunner:
    """Tests for the command-line entry point."""

    @pytest.fixture(autouse=True)
    def clean_environment(self, monkeypatch):
        for variable in ENV_OVERRIDES:
            monkeypatch.delenv(variable, raising=False)

    def test_seed_and_single_tick(self, temp_dir, config_file):
        db_path = temp_dir / "alarms.db"
        path = config_file({
            "database": {"path": str(db_path), "source_path": str(temp_dir / "parking.db")},
        })

        assert main(["--config", path, "--seed", "--once"]) == 0

        names = {d.name for d in AlarmStore(str(db_path)).list_definitions()}
        assert "No Payment Data by 3am" in names
        assert len(names) == 6
