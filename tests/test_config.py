"""Tests for the runtime configuration store."""

import pytest
from sqlalchemy import select, update

from accessbridge.config import MASK, ConfigStore, clean_base_url, parse_value
from accessbridge.errors import ConfigurationError, ValidationError
from accessbridge.models import AppConfig, ChangeLog
from accessbridge.schemas import ConfigValueType


@pytest.fixture
def store(session_factory):
    return ConfigStore(session_factory)


class TestLookup:
    """Cache, then table, then environment, then default."""

    def test_default(self, store):
        assert store.get("UNSET_KEY", "fallback") == "fallback"

    def test_environment_fallback(self, store, monkeypatch):
        monkeypatch.setenv("VENDOR_USER_ID", "operator")
        assert store.get("VENDOR_USER_ID") == "operator"

    def test_table_beats_environment(self, store, monkeypatch):
        monkeypatch.setenv("VENDOR_USER_ID", "operator")
        store.set("VENDOR_USER_ID", "admin2")
        assert store.get("VENDOR_USER_ID") == "admin2"

    def test_typed_values(self, store):
        store.set("MAX_RESIDENT_DURATION_YEARS", "7", ConfigValueType.NUMBER)
        store.set("VENDOR_VERIFY_SSL", True, ConfigValueType.BOOLEAN)
        store.invalidate()
        assert store.get("MAX_RESIDENT_DURATION_YEARS") == 7
        assert store.get("VENDOR_VERIFY_SSL") is True

    def test_cached_until_invalidated(self, store, session_factory):
        store.set("VENDOR_USER_ID", "admin")
        with session_factory() as db:
            db.execute(update(AppConfig).where(AppConfig.key == "VENDOR_USER_ID").values(value="edited"))
            db.commit()

        assert store.get("VENDOR_USER_ID") == "admin"
        store.invalidate()
        assert store.get("VENDOR_USER_ID") == "edited"

    @pytest.mark.parametrize("raw,expected", [("true", True), ("1", True), ("Yes", True), ("false", False), ("0", False)])
    def test_boolean_parsing(self, raw, expected):
        assert parse_value(raw, ConfigValueType.BOOLEAN) is expected


class TestWrites:
    """Writes are audited and seeding is non-destructive."""

    def test_set_returns_previous(self, store):
        assert store.set("VENDOR_USER_ID", "a") is None
        assert store.set("VENDOR_USER_ID", "b") == "a"

    def test_secret_masked_in_audit(self, store, session_factory):
        store.set("VENDOR_APP_SECRET", "s3cret")
        store.set("VENDOR_APP_SECRET", "n3w", changed_by="admin")

        with session_factory() as db:
            rows = db.execute(
                select(ChangeLog).where(ChangeLog.record_key == "VENDOR_APP_SECRET").order_by(ChangeLog.id)
            ).scalars().all()
            values = [(r.old_value, r.new_value, r.changed_by) for r in rows]

        assert values == [(None, MASK, "system:config"), (MASK, MASK, "admin")]

    def test_seed_defaults_keeps_existing(self, store, monkeypatch):
        monkeypatch.setenv("VENDOR_APP_KEY", "from-env")
        store.set("VENDOR_APP_KEY", "from-admin")

        store.seed_defaults()
        store.invalidate()

        assert store.get("VENDOR_APP_KEY") == "from-admin"
        assert store.all()["MAX_RESIDENT_DURATION_YEARS"]["value"] == 10
        assert store.max_duration_years() == 10


class TestValueChecks:
    """Unusable values are refused before they reach the table."""

    @pytest.mark.parametrize("value", ["ten", "7.5", ""])
    def test_non_integer_number_rejected(self, store, value):
        with pytest.raises(ValidationError):
            store.set("MAX_RESIDENT_DURATION_YEARS", value, ConfigValueType.NUMBER)
        assert "MAX_RESIDENT_DURATION_YEARS" not in store.all()
        assert store.max_duration_years() == 10

    @pytest.mark.parametrize("value_type", [ConfigValueType.NUMBER, ConfigValueType.STRING])
    def test_duration_below_one_rejected(self, store, session_factory, value_type):
        """The duration key is numeric whatever type it is sent as."""
        with pytest.raises(ValidationError):
            store.set("MAX_RESIDENT_DURATION_YEARS", "0", value_type)

        with session_factory() as db:
            audit = db.execute(select(ChangeLog).where(ChangeLog.table_name == "app_config")).scalars().all()
        assert audit == []

    def test_rejected_write_keeps_previous_value(self, store):
        store.set("MAX_RESIDENT_DURATION_YEARS", "5", ConfigValueType.NUMBER)
        with pytest.raises(ValidationError):
            store.set("MAX_RESIDENT_DURATION_YEARS", "ten", ConfigValueType.NUMBER)
        store.invalidate()
        assert store.max_duration_years() == 5

    def test_corrupt_stored_number_is_configuration_error(self, store, session_factory):
        """A hand-edited row fails as ConfigurationError, not a bare ValueError."""
        store.set("MAX_RESIDENT_DURATION_YEARS", "5", ConfigValueType.NUMBER)
        with session_factory() as db:
            db.execute(
                update(AppConfig)
                .where(AppConfig.key == "MAX_RESIDENT_DURATION_YEARS")
                .values(value="ten")
            )
            db.commit()
        store.invalidate()

        with pytest.raises(ConfigurationError):
            store.max_duration_years()
        assert store.all()["MAX_RESIDENT_DURATION_YEARS"]["value"] == "ten"

    def test_zero_from_environment_is_configuration_error(self, store, monkeypatch):
        monkeypatch.setenv("MAX_RESIDENT_DURATION_YEARS", "0")
        with pytest.raises(ConfigurationError):
            store.max_duration_years()

    def test_unrelated_string_keys_unchecked(self, store):
        store.set("VENDOR_USER_ID", "ten")
        assert store.get("VENDOR_USER_ID") == "ten"


class TestVendorCredentials:

    def test_complete(self, store):
        store.set("VENDOR_BASE_URL", "https://vendor.test/artemis")
        store.set("VENDOR_APP_KEY", "key")
        store.set("VENDOR_APP_SECRET", "secret")

        creds = store.vendor_credentials()

        assert creds.base_url == "https://vendor.test"
        assert creds.user_id == "admin"
        assert creds.verify_ssl is False
        assert "secret" not in repr(creds)

    def test_missing_keys_listed(self, store):
        store.set("VENDOR_APP_KEY", "key")
        with pytest.raises(ConfigurationError) as exc:
            store.vendor_credentials()
        assert exc.value.details["missing"] == ["VENDOR_APP_SECRET", "VENDOR_BASE_URL"]

    @pytest.mark.parametrize("url,expected", [
        ("https://10.0.0.5/artemis", "https://10.0.0.5"),
        ("https://vendor.test:8443", "https://vendor.test:8443"),
        ("  http://vendor.test/  ", "http://vendor.test"),
    ])
    def test_clean_base_url(self, url, expected):
        assert clean_base_url(url) == expected

    @pytest.mark.parametrize("url", ["vendor.test", "not a url", ""])
    def test_invalid_base_url(self, url):
        with pytest.raises(ConfigurationError):
            clean_base_url(url)
