"""Runtime configuration backed by the app_config table.

Lookup order for `ConfigStore.get`: in-memory cache, app_config row,
process environment (after `load_dotenv()`), caller default. Values are
cached per process; `invalidate()` drops the cache so the next read goes
back to the table. Writes go through the table and update the cache.
"""

import logging
import os
from urllib.parse import urlsplit

from dotenv import load_dotenv
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from .errors import ConfigurationError, ValidationError
from .models import AppConfig, ChangeLog
from .schemas import ConfigValueType, check_config_value

load_dotenv()

logger = logging.getLogger(__name__)

# Keys seeded from the environment on startup
DEFAULTS: list[tuple[str, str | None, ConfigValueType, str]] = [
    ("VENDOR_BASE_URL", None, ConfigValueType.STRING, "Vendor OpenAPI base URL"),
    ("VENDOR_APP_KEY", None, ConfigValueType.STRING, "Vendor app key (X-Ca-Key)"),
    ("VENDOR_APP_SECRET", None, ConfigValueType.STRING, "Vendor app secret used for HMAC signing"),
    ("VENDOR_USER_ID", "admin", ConfigValueType.STRING, "Acting vendor user id (userId header)"),
    ("VENDOR_ORG_INDEX_CODE", "1", ConfigValueType.STRING, "Vendor organization index code for new persons"),
    ("VENDOR_VERIFY_SSL", "false", ConfigValueType.BOOLEAN, "Verify the vendor TLS certificate"),
    ("MAX_RESIDENT_DURATION_YEARS", "10", ConfigValueType.NUMBER, "Maximum resident validity span in years"),
]

SECRET_KEYS = {"VENDOR_APP_SECRET"}
MASK = "********"


def parse_value(value: str | None, value_type: ConfigValueType):
    """Parse a stored text value back into its typed form."""
    if value is None:
        return None
    if value_type == ConfigValueType.BOOLEAN:
        return str(value).strip().lower() in ("true", "1", "yes", "on")
    if value_type == ConfigValueType.NUMBER:
        return int(str(value).strip())
    return str(value)


def stringify_value(value, value_type: ConfigValueType) -> str | None:
    if value is None:
        return None
    if value_type == ConfigValueType.BOOLEAN:
        if isinstance(value, str):
            return "true" if parse_value(value, value_type) else "false"
        return "true" if value else "false"
    return str(value)


def clean_base_url(url: str) -> str:
    """Reduce a configured URL to scheme://host[:port].

    Vendor paths already start with /artemis, so any path on the configured
    base URL is dropped.
    """
    parts = urlsplit(url.strip())
    if not parts.scheme or not parts.hostname:
        raise ConfigurationError("Invalid vendor base URL configuration", url=url)
    port = f":{parts.port}" if parts.port else ""
    return f"{parts.scheme}://{parts.hostname}{port}"


class VendorCredentialConfig(BaseModel):
    """Everything needed to sign and send one vendor request."""

    app_key: str = Field(min_length=1)
    app_secret: str = Field(min_length=1, repr=False)
    base_url: str
    user_id: str = "admin"
    org_index_code: str = "1"
    verify_ssl: bool = False


class ConfigStore:
    """Process-wide configuration context.

    Construct one per process and inject it; changes made through `set`
    apply to the next vendor call. Edits made directly in the database are
    seen after `invalidate()`.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._cache: dict[str, object] = {}

    def get(self, key: str, default=None):
        if key in self._cache:
            return self._cache[key]

        with self._session_factory() as db:
            row = db.execute(select(AppConfig).where(AppConfig.key == key)).scalar_one_or_none()
            if row is not None and row.value is not None:
                try:
                    value = parse_value(row.value, row.type)
                except ValueError:
                    raise ConfigurationError(
                        f"Stored value for {key} is not a valid {row.type.value}", key=key
                    ) from None
                self._cache[key] = value
                return value

        env_value = os.getenv(key)
        if env_value is not None:
            self._cache[key] = env_value
            return env_value
        return default

    def set(
        self,
        key: str,
        value,
        value_type: ConfigValueType = ConfigValueType.STRING,
        description: str = "",
        changed_by: str = "system:config",
    ):
        """Insert or replace a key, returning the previous stored value.

        Raises ValidationError, without writing anything, when the value does
        not parse as `value_type`. The change is written to change_log in the
        same transaction, with secret values masked.
        """
        try:
            check_config_value(key, value, value_type)
        except ValueError as e:
            raise ValidationError(str(e), key=key) from None
        stored = stringify_value(value, value_type)
        parsed = parse_value(stored, value_type)
        masked = key in SECRET_KEYS
        with self._session_factory() as db:
            old = self._upsert(db, key, stored, value_type, description)
            db.add(ChangeLog(
                table_name="app_config",
                record_key=key,
                change_type="config",
                field_name="value",
                old_value=MASK if masked and old is not None else old,
                new_value=MASK if masked else stored,
                changed_by=changed_by,
                change_reason=description or None,
            ))
            db.commit()
        logger.info(f"Configuration {key} updated by {changed_by}")
        self._cache[key] = parsed
        return old

    def all(self) -> dict[str, dict]:
        with self._session_factory() as db:
            rows = db.execute(select(AppConfig).order_by(AppConfig.key)).scalars().all()
            return {
                row.key: {
                    "value": self._display_value(row),
                    "type": row.type.value,
                    "description": row.description,
                    "updated_at": row.updated_at,
                }
                for row in rows
            }

    def invalidate(self) -> None:
        """Drop cached values; the next read hits the table again."""
        self._cache.clear()
        logger.info("Configuration cache invalidated")

    def seed_defaults(self) -> None:
        """Create missing keys from the environment, never overwriting existing rows."""
        with self._session_factory() as db:
            for key, fallback, value_type, description in DEFAULTS:
                exists = db.execute(select(AppConfig.id).where(AppConfig.key == key)).first()
                if exists:
                    continue
                value = os.getenv(key, fallback)
                if value is None:
                    continue
                db.add(AppConfig(
                    key=key,
                    value=stringify_value(value, value_type),
                    type=value_type,
                    description=description,
                ))
            db.commit()

    def max_duration_years(self) -> int:
        value = self.get("MAX_RESIDENT_DURATION_YEARS", 10)
        try:
            check_config_value("MAX_RESIDENT_DURATION_YEARS", value, ConfigValueType.NUMBER)
        except ValueError as e:
            raise ConfigurationError(str(e), key="MAX_RESIDENT_DURATION_YEARS") from None
        return int(str(value).strip())

    def vendor_credentials(self) -> VendorCredentialConfig:
        """Current vendor settings. Raises ConfigurationError when incomplete."""
        key = self.get("VENDOR_APP_KEY")
        secret = self.get("VENDOR_APP_SECRET")
        base_url = self.get("VENDOR_BASE_URL")
        missing = [
            name for name, value in (
                ("VENDOR_APP_KEY", key),
                ("VENDOR_APP_SECRET", secret),
                ("VENDOR_BASE_URL", base_url),
            ) if not value
        ]
        if missing:
            raise ConfigurationError("Vendor configuration incomplete", missing=missing)

        return VendorCredentialConfig(
            app_key=str(key),
            app_secret=str(secret),
            base_url=clean_base_url(str(base_url)),
            user_id=str(self.get("VENDOR_USER_ID", "admin")),
            org_index_code=str(self.get("VENDOR_ORG_INDEX_CODE", "1")),
            verify_ssl=parse_value(str(self.get("VENDOR_VERIFY_SSL", False)), ConfigValueType.BOOLEAN),
        )

    @staticmethod
    def _display_value(row: AppConfig):
        # Unparseable rows are shown raw
        try:
            return parse_value(row.value, row.type)
        except ValueError:
            return row.value

    @staticmethod
    def _upsert(
        db: Session,
        key: str,
        stored: str | None,
        value_type: ConfigValueType,
        description: str,
    ) -> str | None:
        row = db.execute(select(AppConfig).where(AppConfig.key == key)).scalar_one_or_none()
        if row is None:
            db.add(AppConfig(key=key, value=stored, type=value_type, description=description))
            return None
        old = row.value
        row.value = stored
        row.type = value_type
        if description:
            row.description = description
        return old
