"""Pydantic schemas for the resident registry and vendor sync.

Schema Engineering Philosophy:
- Field descriptions document the contract with callers and with the vendor
- Request schemas validate at the edge so the engine receives clean input
- Response schemas are plain result objects, independent of HTTP framing

The vendor is an access-control platform (Artemis-style OpenAPI). Residents
are created there as "persons"; visitors are registered against a host
resident and receive a QR code.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =============================================================================
# ENUMS
# =============================================================================


class ResidentKind(str, Enum):
    """Relationship of a registry entry to the community unit."""

    RESIDENT = "resident"
    TENANT = "tenant"
    FAMILY_MEMBER = "family_member"
    STAFF = "staff"
    VISITOR = "visitor"


class ResidentStatus(str, Enum):
    """Lifecycle status. Deletion is soft: rows are never removed."""

    ACTIVE = "active"
    DELETED = "deleted"


class ConfigValueType(str, Enum):
    """How a stored configuration value is parsed back."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"


# =============================================================================
# RESIDENT SCHEMAS
# =============================================================================


class ResidentCreate(BaseModel):
    """Input for creating a resident locally and on the vendor."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(
        min_length=2,
        max_length=100,
        description="Full name. Last whitespace token becomes the vendor family name."
    )
    email: str = Field(
        max_length=255,
        pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$",
        description="Contact email. Also a lookup key."
    )
    phone: str | None = Field(
        default=None,
        max_length=20,
        pattern=r"^$|^[+]?[\d\s\-()]{7,20}$",
        description="Phone number in any common format."
    )
    community: str = Field(
        max_length=50,
        description="Community the unit belongs to. Used as a lookup filter."
    )
    unit_id: str = Field(
        min_length=1,
        max_length=50,
        description="Unit identifier within the community."
    )
    kind: ResidentKind = Field(
        default=ResidentKind.RESIDENT,
        description="resident, tenant, family_member, staff or visitor."
    )
    valid_from: datetime | str = Field(
        description="Start of access validity. ISO-8601; naive values are local time."
    )
    valid_to: datetime | str = Field(
        description="End of access validity. Clamped to the configured maximum span."
    )


class DateAdjustment(BaseModel):
    """Reported when a validity window was clamped to the vendor limit."""

    original_from: str
    original_to: str
    adjusted_from: str
    adjusted_to: str
    reason: str


class ResidentOut(BaseModel):
    """A resident as seen by callers."""

    model_config = ConfigDict(from_attributes=True)

    owner_id: str = Field(description="Local code: the caller-facing identifier.")
    vendor_id: str | None = Field(
        default=None,
        description="Vendor person id. Absent means the record never synced."
    )
    name: str
    email: str
    phone: str | None = None
    community: str | None = None
    unit_id: str
    kind: ResidentKind
    valid_from: str
    valid_to: str
    synced: bool = False
    date_adjustment: DateAdjustment | None = None


class DeleteResult(BaseModel):
    """Outcome of a soft delete. Vendor failure does not block the delete."""

    success: bool = True
    owner_id: str
    vendor_deleted: bool = Field(
        description="True when the vendor confirmed its side of the deletion."
    )
    vendor_error: str | None = Field(
        default=None,
        description="Vendor failure message, recorded but not escalated."
    )


# =============================================================================
# CREDENTIAL SCHEMAS
# =============================================================================


class ResidentCredential(BaseModel):
    """Short-lived dynamic QR credential for a resident."""

    id: str
    owner_id: str
    owner_type: ResidentKind
    unit_id: str
    qr_code: str


class VisitorPass(BaseModel):
    """Visitor registration result with a display QR string."""

    visit_id: str
    unit_id: str
    owner_id: str
    owner_type: ResidentKind
    visitor_name: str
    visit_date: str | None = Field(
        default=None,
        description="Caller-supplied visit date. Display only; not sent to the vendor."
    )
    visit_start: str = Field(description="Window start actually registered with the vendor.")
    visit_end: str = Field(description="Window end actually registered with the vendor.")
    qr_code: str
    qr_code_decoded: bool = Field(
        default=False,
        description="False when qr_code is the VISITOR_<id> fallback token."
    )


class VendorProbe(BaseModel):
    """Result of the vendor version/health probe."""

    success: bool
    connected: bool
    version: Any = None
    message: str
    error: str | None = None


# =============================================================================
# ADMIN SCHEMAS
# =============================================================================


class ConfigUpdate(BaseModel):
    """Admin update of one runtime configuration key."""

    model_config = ConfigDict(str_strip_whitespace=True)

    key: str = Field(min_length=1, max_length=100)
    value: str
    type: ConfigValueType = ConfigValueType.STRING
    description: str = ""

    @field_validator("key")
    @classmethod
    def normalize_key(cls, v: str) -> str:
        """Config keys are stored upper-case."""
        return v.upper()

    @model_validator(mode="after")
    def value_matches_type(self) -> "ConfigUpdate":
        """Reject values that would not parse back, before anything is saved."""
        check_config_value(self.key, self.value, self.type)
        return self


class ChangeLogEntry(BaseModel):
    """Audit trail entry for registry and configuration changes."""

    model_config = ConfigDict(from_attributes=True)

    table_name: str
    record_key: str
    change_type: Literal["create", "create_failed", "delete", "inconsistency", "config"]
    field_name: str | None = None
    old_value: str | None = None
    new_value: str | None = None
    changed_by: str
    change_reason: str | None = None
    source_reference: str | None = None
    changed_at: datetime


# =============================================================================
# HELPER FUNCTIONS: Vendor name mapping
# =============================================================================


def split_person_name(name: str) -> tuple[str, str]:
    """Split a full name into (given_name, family_name) for the vendor.

    The last whitespace token is the family name and the rest is the given
    name. A single-token name is used for both fields.

    Examples:
    - "Jane Doe" → ("Jane", "Doe")
    - "Mary Ann van Dyke" → ("Mary Ann van", "Dyke")
    - "Cher" → ("Cher", "Cher")
    """
    tokens = name.split()
    if not tokens:
        return name, name
    family = tokens[-1]
    given = " ".join(tokens[:-1]) or family
    return given, family


# =============================================================================
# HELPER FUNCTIONS: Config value checks
# =============================================================================

# Lower bounds for numeric keys the sync engine depends on
CONFIG_MINIMUMS = {
    "MAX_RESIDENT_DURATION_YEARS": 1,
}


def check_config_value(key: str, value, value_type: ConfigValueType) -> None:
    """Raise ValueError when `value` is unusable for `key` as `value_type`.

    Numbers must be whole integers. Keys listed in CONFIG_MINIMUMS are
    numeric whatever `value_type` says, and must not fall below their bound.
    """
    minimum = CONFIG_MINIMUMS.get(key.upper())
    if value is None or (value_type != ConfigValueType.NUMBER and minimum is None):
        return
    try:
        number = int(str(value).strip())
    except ValueError:
        raise ValueError(f"{key} expects an integer, got {value!r}") from None
    if minimum is not None and number < minimum:
        raise ValueError(f"{key} must be at least {minimum}, got {number}")
