import pytest
from flash_notifications.config import NotificationSettings
from flash_notifications.stores import MemoryKeyValueStore, create_store
from flash_notifications.stores.sql_alchemy import SQLAlchemyKeyValueStore
from pydantic import ValidationError


class TestNotificationSettings:
    def test_defaults(self):
        settings = NotificationSettings(_env_file=None)

        assert settings.LOG_LEVEL == "INFO"
        assert settings.DATABASE_URL is None
        assert settings.DEFAULT_TIMEZONE == "UTC"
        assert settings.MATCH_MAX_LOOKAHEAD_YEARS == 5
        assert settings.MAX_ALARMS == 500
        assert settings.EVENT_QUEUE_SIZE == 1000

    def test_env_variable_overrides(self, monkeypatch):
        """Verify that actual environment variables override the defaults."""
        monkeypatch.setenv("MAX_ALARMS", "64")
        monkeypatch.setenv("DEFAULT_TIMEZONE", "Europe/Berlin")

        settings = NotificationSettings(_env_file=None)

        assert settings.MAX_ALARMS == 64
        assert settings.timezone.key == "Europe/Berlin"

    def test_invalid_timezone(self):
        with pytest.raises(ValidationError, match="Invalid timezone name"):
            NotificationSettings(_env_file=None, DEFAULT_TIMEZONE="Mars/Olympus")

    @pytest.mark.parametrize(
        "field", ["MAX_ALARMS", "EVENT_QUEUE_SIZE", "MATCH_MAX_LOOKAHEAD_YEARS"]
    )
    def test_limits_must_be_positive(self, field):
        with pytest.raises(ValidationError, match=f"{field} must be positive"):
            NotificationSettings(_env_file=None, **{field: 0})


class TestCreateStore:
    def test_memory_store_without_database(self):
        store = create_store(NotificationSettings(_env_file=None))

        assert isinstance(store, MemoryKeyValueStore)

    def test_sql_store_with_database_url(self):
        settings = NotificationSettings(
            _env_file=None, DATABASE_URL="sqlite+aiosqlite:///:memory:"
        )

        assert isinstance(create_store(settings), SQLAlchemyKeyValueStore)
