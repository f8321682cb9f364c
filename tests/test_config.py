"""Tests for StoreSettings."""

import pytest

from trellis.store import StoreSettings
from trellis.store.config import DEFAULT_URL


class TestStoreSettings:
    """Tests for StoreSettings defaults, validation and environment loading."""

    def test_defaults(self):
        settings = StoreSettings()
        assert settings.url == DEFAULT_URL
        assert settings.journal_mode == "WAL"
        assert settings.foreign_keys is True
        assert settings.defer_foreign_keys is True
        assert settings.savepoint_prefix == "trellis"

    def test_frozen(self):
        settings = StoreSettings()
        with pytest.raises(AttributeError):
            settings.url = "memory://"

    def test_invalid_journal_mode(self):
        with pytest.raises(ValueError, match="journal mode"):
            StoreSettings(journal_mode="SOMETIMES")

    def test_invalid_savepoint_prefix(self):
        with pytest.raises(ValueError, match="savepoint prefix"):
            StoreSettings(savepoint_prefix="no spaces")

    def test_from_env_empty(self):
        assert StoreSettings.from_env(environ={}) == StoreSettings()

    def test_from_env_reads_variables(self):
        settings = StoreSettings.from_env(
            environ={
                "TRELLIS_URL": "sqlite:///other.db",
                "TRELLIS_JOURNAL_MODE": "delete",
                "TRELLIS_FOREIGN_KEYS": "off",
                "TRELLIS_DEFER_FOREIGN_KEYS": "0",
            }
        )
        assert settings.url == "sqlite:///other.db"
        assert settings.journal_mode == "DELETE"
        assert settings.foreign_keys is False
        assert settings.defer_foreign_keys is False

    def test_overrides_apply_below_environment(self):
        settings = StoreSettings.from_env(
            environ={"TRELLIS_URL": "memory://"},
            url="sqlite:///explicit.db",
            savepoint_prefix="batch",
        )
        assert settings.url == "memory://"
        assert settings.savepoint_prefix == "batch"

    @pytest.mark.parametrize("value", ["1", "true", "YES", "on", " y "])
    def test_truthy_strings(self, value):
        settings = StoreSettings.from_env(
            environ={"TRELLIS_FOREIGN_KEYS": value}, foreign_keys=False
        )
        assert settings.foreign_keys is True
