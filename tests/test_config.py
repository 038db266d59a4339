"""Tests for configuration loading."""

import json

import pytest

from querydoctor.config import (
    Config,
    StorageDriver,
    build_masker,
    get_config,
    load_config_from_env,
    load_config_from_file,
)
from querydoctor.exceptions import ConfigurationError
from querydoctor.masking import MASKED


class TestDefaults:
    """Defaults used when nothing is configured."""

    def test_storage_defaults(self):
        config = Config()
        assert config.storage.driver == StorageDriver.SQLITE
        assert config.storage.retention_days == 14
        assert config.storage.cleanup_every == 500

    def test_capture_defaults(self):
        config = Config()
        assert config.capture.http is True
        assert config.capture.queue is True
        assert config.capture.cli is False
        assert config.capture.sample_rate == 1.0

    def test_ci_default_threshold(self):
        assert Config().ci.fail_on == "high"

    def test_analyzers_enabled_by_default(self):
        assert Config().is_analyzer_enabled("n_plus_one")
        assert Config().analyzer_options("slow") == {}


class TestLoadFromEnv:
    """QUERYDOCTOR_* environment variables."""

    def test_storage_settings(self):
        config = load_config_from_env({
            "QUERYDOCTOR_STORAGE": "memory",
            "QUERYDOCTOR_RETENTION_DAYS": "3",
        })
        assert config.storage.driver == StorageDriver.MEMORY
        assert config.storage.retention_days == 3

    def test_analyzer_thresholds(self):
        config = load_config_from_env({
            "QUERYDOCTOR_ANALYZER_SLOW_THRESHOLD_MS": "250.5",
            "QUERYDOCTOR_ANALYZER_N_PLUS_ONE_MIN_REPETITIONS": "8",
            "QUERYDOCTOR_ANALYZER_SELECT_STAR_ENABLED": "false",
        })
        assert config.analyzer_options("slow") == {"threshold_ms": 250.5}
        assert config.analyzer_options("n_plus_one") == {"min_repetitions": 8}
        assert not config.is_analyzer_enabled("select_star")

    def test_unrecognised_analyzer_setting_ignored(self):
        config = load_config_from_env({"QUERYDOCTOR_ANALYZER_SLOW_COLOUR": "blue"})
        assert config.analyzers == {}

    def test_bad_integer_falls_back_to_default(self):
        config = load_config_from_env({"QUERYDOCTOR_RETENTION_DAYS": "soon"})
        assert config.storage.retention_days == 14

    def test_invalid_value_raises(self):
        with pytest.raises(ConfigurationError):
            load_config_from_env({"QUERYDOCTOR_SAMPLE_RATE": "2.5"})

    def test_masking_switch(self):
        config = load_config_from_env({"QUERYDOCTOR_MASKING_ENABLED": "off"})
        assert config.masking.enabled is False

    def test_get_config_reads_config_file_variable(self, tmp_path, monkeypatch):
        path = tmp_path / "doctor.json"
        path.write_text(json.dumps({"storage": {"driver": "memory"}}))
        monkeypatch.setenv("QUERYDOCTOR_CONFIG_FILE", str(path))

        assert get_config().storage.driver == StorageDriver.MEMORY


class TestLoadFromFile:
    """YAML and JSON config files."""

    def test_yaml(self, tmp_path):
        path = tmp_path / ".querydoctor.yml"
        path.write_text(
            "storage:\n"
            "  driver: memory\n"
            "analyzers:\n"
            "  slow:\n"
            "    threshold_ms: 250\n"
            "capture:\n"
            "  ignore_routes: ['GET /health']\n"
        )
        config = load_config_from_file(path)

        assert config.storage.driver == StorageDriver.MEMORY
        assert config.analyzer_options("slow") == {"threshold_ms": 250}
        assert config.capture.ignore_routes == ["GET /health"]

    def test_json(self, tmp_path):
        path = tmp_path / "doctor.json"
        path.write_text(json.dumps({"ci": {"fail_on": "critical"}}))
        assert load_config_from_file(path).ci.fail_on == "critical"

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("")
        assert load_config_from_file(path) == Config()

    def test_missing_file_falls_back_to_env(self, tmp_path):
        assert load_config_from_file(tmp_path / "absent.yml") == Config()

    def test_unknown_key_rejected(self, tmp_path):
        path = tmp_path / "doctor.yml"
        path.write_text("storag:\n  driver: memory\n")
        with pytest.raises(ConfigurationError):
            load_config_from_file(path)

    def test_malformed_yaml_rejected(self, tmp_path):
        path = tmp_path / "doctor.yml"
        path.write_text("storage: [unclosed\n")
        with pytest.raises(ConfigurationError) as exc_info:
            load_config_from_file(path)
        assert exc_info.value.config_key == str(path)

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "doctor.json"
        path.write_text("[1, 2, 3]")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_config_from_file(path)


class TestBuildMasker:
    """Masker built from the masking policy."""

    def test_defaults_mask_passwords(self):
        masker = build_masker(Config())
        assert masker.mask("select * from users where password = ?", ["x"]) == [MASKED]

    def test_disabled(self):
        masker = build_masker(Config(masking={"enabled": False}))
        assert masker.mask("select * from users where password = ?", ["x"]) == ["x"]

    def test_invalid_pattern(self):
        config = Config(masking={"patterns": ["(unclosed"]})
        with pytest.raises(ConfigurationError) as exc_info:
            build_masker(config)
        assert exc_info.value.config_key == "masking.patterns"
