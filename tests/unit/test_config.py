"""Unit tests for configuration loading and the run configuration."""

from pathlib import Path

import pytest
import yaml

from basecamp_migrator.core.config import (
    MigrationConfig,
    create_default_config,
    load_config,
)
from basecamp_migrator.core.context import RunConfig
from basecamp_migrator.exceptions import ConfigError


class TestLoadConfig:
    """Tests for load_config()."""

    def test_reads_yaml(self, config_file):
        config = load_config(config_file, environ={})

        assert config.basecamp.account_id == "999"
        assert config.basecamp.rate_limit == 2
        assert config.fizzy.api_url == "https://fizzy.test"
        assert config.max_retries == 4
        assert config.state_path == config_file.parent / "state"

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(tmp_path / "nope.yaml", environ={})
        assert config == MigrationConfig()

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path, environ={}) == MigrationConfig()

    def test_invalid_yaml_uses_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("basecamp: [unclosed")
        assert load_config(path, environ={}) == MigrationConfig()

    def test_non_mapping_uses_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        assert load_config(path, environ={}) == MigrationConfig()

    def test_environment_overrides(self, config_file):
        config = load_config(
            config_file,
            environ={"FIZZY_API_URL": "https://env.test", "BASECAMP_RATE_LIMIT": "0.5"},
        )
        assert config.fizzy.api_url == "https://env.test"
        assert config.basecamp.rate_limit == 0.5

    def test_bad_environment_number(self, config_file):
        with pytest.raises(ConfigError):
            load_config(config_file, environ={"FIZZY_RATE_LIMIT": "fast"})

    def test_invalid_values_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("batch_size: 0\n")
        with pytest.raises(ConfigError):
            load_config(path, environ={})

    def test_retry_config_shape(self):
        assert MigrationConfig(max_retries=5).retry_config == {
            "max_retries": 5,
            "retry_delay": 1.0,
            "max_retry_delay": 30.0,
            "default_retry_after": 5.0,
        }


class TestCreateDefaultConfig:
    """Tests for create_default_config()."""

    def test_writes_loadable_file(self, tmp_path):
        path = tmp_path / "sub" / "config.yaml"

        assert create_default_config(path)

        raw = yaml.safe_load(path.read_text())
        assert raw["fizzy"]["api_url"] == "https://app.fizzy.do"
        assert load_config(path, environ={}).batch_size == 10

    def test_does_not_overwrite(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("batch_size: 3\n")

        assert not create_default_config(path)
        assert path.read_text() == "batch_size: 3\n"


class TestRunConfig:
    """Tests for RunConfig validation and derived values."""

    def _make(self, **overrides):
        fields = {"project_id": "p", "card_table_id": "ct", "account_slug": "acct", "board_id": "b"}
        fields.update(overrides)
        return RunConfig(**fields)

    def test_valid(self):
        self._make().validate()

    @pytest.mark.parametrize("field", ["project_id", "card_table_id", "account_slug"])
    def test_required_ids(self, field):
        with pytest.raises(ConfigError):
            self._make(**{field: ""}).validate()

    def test_exactly_one_board_target(self):
        with pytest.raises(ConfigError):
            self._make(board_id=None).validate()
        with pytest.raises(ConfigError):
            self._make(create_board_name="New").validate()
        self._make(board_id=None, create_board_name="New").validate()

    def test_log_prefix(self):
        assert self._make(dry_run=True).log_prefix == "[DRY RUN] "
        assert self._make().log_prefix == ""

    def test_is_frozen(self):
        config = self._make()
        with pytest.raises(AttributeError):
            config.dry_run = True  # type: ignore[misc]

    def test_options(self):
        options = self._make(update_existing=True, batch_size=3).options
        assert options["update_existing"] is True
        assert options["batch_size"] == 3
        assert options["dry_run"] is False


def test_state_path_expands_user():
    config = MigrationConfig(state_dir="~/migrations-test")
    assert config.state_path == Path("~/migrations-test").expanduser()
