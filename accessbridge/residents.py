"""Resident sync engine: create, read and delete across the registry and vendor.

Consistency policy:
- Create is two-phase: vendor first, then the local row. A vendor failure
  leaves no local row (the allocated code is skipped, never reused). A local
  failure after vendor success leaves an orphan vendor person; it is logged,
  written to change_log as an `inconsistency`, and raised.
- Delete is local-authoritative: the vendor deletion is best-effort and the
  local row is soft-deleted whatever the vendor says.
- Reads only ever see active rows.

No session is held across an `await`: each step opens its own short session.
"""

import logging

from sqlalchemy import Integer, cast, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .config import ConfigStore
from .dates import DateRange, DateRangeNormalizer, duration_years
from .errors import (
    ConfigurationError,
    InternalInconsistency,
    NotFound,
    StorageConflict,
)
from .models import ChangeLog, Resident, utcnow
from .schemas import (
    DateAdjustment,
    DeleteResult,
    ResidentCreate,
    ResidentOut,
    ResidentStatus,
    split_person_name,
)
from .vendor import VendorClient

logger = logging.getLogger(__name__)

ACTOR = "system:sync_engine"
GENDER_UNKNOWN = 0
NUMERIC_CODE = "^[0-9]+$"


def resident_to_out(row: Resident, dates: DateRange | None = None) -> ResidentOut:
    """Caller-facing view of a row, with the clamp report when there was one."""
    adjustment = None
    if dates is not None and dates.adjusted:
        adjustment = DateAdjustment(
            original_from=dates.original_from,
            original_to=dates.original_to,
            adjusted_from=dates.start,
            adjusted_to=dates.end,
            reason=dates.reason,
        )
    return ResidentOut(
        owner_id=row.local_code,
        vendor_id=row.vendor_id,
        name=row.name,
        email=row.email,
        phone=row.phone,
        community=row.community,
        unit_id=row.unit_id,
        kind=row.kind,
        valid_from=row.valid_from,
        valid_to=row.valid_to,
        synced=row.synced,
        date_adjustment=adjustment,
    )


def build_person_payload(
    local_code: str,
    data: ResidentCreate,
    dates: DateRange,
    org_index_code: str,
) -> dict:
    """Vendor person-create body."""
    given, family = split_person_name(data.name)
    return {
        "personCode": local_code,
        "personFamilyName": family,
        "personGivenName": given,
        "gender": GENDER_UNKNOWN,
        "orgIndexCode": org_index_code,
        "phoneNo": data.phone or "",
        "email": data.email,
        "beginTime": dates.start,
        "endTime": dates.end,
    }


def is_local_code_conflict(error: IntegrityError) -> bool:
    """True when the violation is the unique index on residents.local_code."""
    text = str(error.orig).lower()
    return "local_code" in text and ("unique" in text or "duplicate" in text)


def extract_person_id(data) -> str | None:
    """The add-person endpoint answers with the bare person id as `data`."""
    if isinstance(data, dict):
        data = data.get("personId")
    if data is None or str(data).strip() == "":
        return None
    return str(data)


class ResidentSyncEngine:
    """Owns the create/read/delete workflow for residents."""

    def __init__(
        self,
        session_factory: sessionmaker,
        vendor: VendorClient,
        config: ConfigStore,
        *,
        tz=None,
    ):
        self._session_factory = session_factory
        self.vendor = vendor
        self.config = config
        self.tz = tz

    def normalizer(self) -> DateRangeNormalizer:
        return DateRangeNormalizer(self.config.max_duration_years(), tz=self.tz)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def allocate_code(self) -> str:
        """Next local code: max numeric code seen so far + 1.

        Counts every resident row (deleted too) and every code named in the
        residents audit trail, so codes burned by a failed vendor create are
        never handed out again. Legacy non-numeric codes are ignored.

        Read-then-write: two concurrent callers can get the same value. The
        unique index on local_code makes the second insert fail.
        """
        with self._session_factory() as db:
            in_registry = db.execute(
                select(func.max(cast(Resident.local_code, Integer)))
                .where(Resident.local_code.regexp_match(NUMERIC_CODE))
            ).scalar()
            in_audit = db.execute(
                select(func.max(cast(ChangeLog.record_key, Integer)))
                .where(
                    ChangeLog.table_name == "residents",
                    ChangeLog.record_key.regexp_match(NUMERIC_CODE),
                )
            ).scalar()
        return str(max(in_registry or 0, in_audit or 0) + 1)

    async def create(self, data: ResidentCreate) -> ResidentOut:
        local_code = self.allocate_code()
        dates = self.normalizer().normalize(data.valid_from, data.valid_to)
        if dates.adjusted:
            logger.info(
                f"Validity for {local_code} clamped from "
                f"{duration_years(dates.original_from, dates.original_to)} years: {dates.reason}"
            )

        payload = build_person_payload(
            local_code, data, dates, str(self.config.get("VENDOR_ORG_INDEX_CODE", "1"))
        )
        logger.info(f"Creating resident {local_code} on vendor (unit={data.unit_id}, community={data.community})")

        result = await self.vendor.add_person(payload)
        if not result.ok:
            logger.error(
                f"Vendor rejected resident {local_code}: code={result.code} msg={result.message}; "
                "no local row written"
            )
            self._audit(
                local_code, "create_failed", None,
                f"vendor create failed: code={result.code} msg={result.message}",
            )
            raise result.to_error("create person")

        vendor_id = extract_person_id(result.data)
        if vendor_id is None:
            logger.warning(f"Vendor accepted resident {local_code} without returning a person id")

        try:
            with self._session_factory() as db:
                row = Resident(
                    local_code=local_code,
                    vendor_id=vendor_id,
                    name=data.name,
                    email=data.email,
                    phone=data.phone,
                    community=data.community,
                    unit_id=data.unit_id,
                    kind=data.kind,
                    valid_from=dates.start,
                    valid_to=dates.end,
                    status=ResidentStatus.ACTIVE,
                )
                db.add(row)
                db.flush()
                db.add(ChangeLog(
                    table_name="residents",
                    record_key=local_code,
                    change_type="create",
                    new_value=vendor_id,
                    changed_by=ACTOR,
                    change_reason=dates.reason,
                    source_reference=vendor_id,
                ))
                db.commit()
                out = resident_to_out(row, dates)
        except SQLAlchemyError as e:
            if not (isinstance(e, IntegrityError) and is_local_code_conflict(e)):
                logger.exception(f"Vendor created person {vendor_id} but local persistence failed for {local_code}")
                self._audit(local_code, "inconsistency", vendor_id, f"local persistence failed: {e}")
                raise InternalInconsistency(
                    "Resident created on vendor but could not be saved locally",
                    owner_id=local_code,
                    vendor_id=vendor_id,
                ) from e
            logger.error(f"Local code {local_code} taken concurrently; vendor person {vendor_id} orphaned")
            self._audit(local_code, "inconsistency", vendor_id, f"local code conflict: {e.orig}")
            raise StorageConflict(
                f"Local code {local_code} was allocated concurrently; retry the request",
                owner_id=local_code,
                vendor_id=vendor_id,
            ) from e

        logger.info(f"Resident {local_code} created (vendor id {vendor_id})")
        return out

    def _audit(self, local_code: str, change_type: str, vendor_id: str | None, reason: str) -> None:
        """Standalone audit row, outside any failed transaction."""
        try:
            with self._session_factory() as db:
                db.add(ChangeLog(
                    table_name="residents",
                    record_key=local_code,
                    change_type=change_type,
                    new_value=vendor_id,
                    changed_by=ACTOR,
                    change_reason=reason,
                    source_reference=vendor_id,
                ))
                db.commit()
        except SQLAlchemyError:
            logger.exception(
                f"Could not write {change_type} audit for {local_code}; "
                f"vendor person {vendor_id} may need manual reconciliation"
            )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def find_active(self, owner_id: str) -> Resident:
        """Active row for a local code, or NotFound."""
        with self._session_factory() as db:
            row = db.execute(
                select(Resident).where(
                    Resident.local_code == str(owner_id),
                    Resident.status != ResidentStatus.DELETED,
                )
            ).scalar_one_or_none()
        if row is None:
            raise NotFound("Resident not found", owner_id=str(owner_id))
        return row

    def get_resident(self, owner_id: str) -> ResidentOut:
        return resident_to_out(self.find_active(owner_id))

    def get_residents(
        self,
        owner_id: str | None = None,
        email: str | None = None,
        community: str | None = None,
    ) -> list[ResidentOut]:
        """Lookup by local code, else by email, else everything; newest first."""
        query = select(Resident).where(Resident.status != ResidentStatus.DELETED)
        if owner_id:
            query = query.where(Resident.local_code == str(owner_id))
        elif email:
            query = query.where(Resident.email == email)
        if community:
            query = query.where(Resident.community == community)
        query = query.order_by(Resident.created_at.desc(), Resident.id.desc())

        with self._session_factory() as db:
            rows = db.execute(query).scalars().all()
        return [resident_to_out(row) for row in rows]

    def list_unsynced(self) -> list[ResidentOut]:
        with self._session_factory() as db:
            rows = db.execute(
                select(Resident)
                .where(Resident.status != ResidentStatus.DELETED, Resident.vendor_id.is_(None))
                .order_by(Resident.id)
            ).scalars().all()
        return [resident_to_out(row) for row in rows]

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete(self, owner_id: str) -> DeleteResult:
        row = self.find_active(owner_id)

        vendor_deleted = False
        vendor_error = None
        if row.synced:
            try:
                result = await self.vendor.delete_person(row.vendor_id)
            except ConfigurationError as e:
                vendor_error = e.message
                logger.warning(f"Skipping vendor delete for {row.local_code}: {e.message}")
            else:
                if result.ok:
                    vendor_deleted = True
                else:
                    vendor_error = result.message or result.code
                    logger.warning(
                        f"Vendor delete failed for {row.local_code} (person {row.vendor_id}): "
                        f"code={result.code} msg={result.message}; soft-deleting locally anyway"
                    )
        else:
            logger.info(f"Resident {row.local_code} was never synced; no vendor delete issued")

        with self._session_factory() as db:
            updated = db.execute(
                update(Resident)
                .where(
                    Resident.local_code == row.local_code,
                    Resident.status != ResidentStatus.DELETED,
                )
                .values(status=ResidentStatus.DELETED, updated_at=utcnow())
            ).rowcount
            if not updated:
                db.rollback()
                raise NotFound("Resident not found", owner_id=row.local_code)
            db.add(ChangeLog(
                table_name="residents",
                record_key=row.local_code,
                change_type="delete",
                field_name="status",
                old_value=ResidentStatus.ACTIVE.value,
                new_value=ResidentStatus.DELETED.value,
                changed_by=ACTOR,
                change_reason=(
                    "vendor person deleted" if vendor_deleted
                    else f"vendor delete not confirmed: {vendor_error or 'not synced'}"
                ),
                source_reference=row.vendor_id,
            ))
            db.commit()

        logger.info(f"Resident {row.local_code} soft deleted (vendor_deleted={vendor_deleted})")
        return DeleteResult(
            owner_id=row.local_code,
            vendor_deleted=vendor_deleted,
            vendor_error=vendor_error,
        )

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def recent_changes(self, limit: int = 100, change_type: str | None = None) -> list[ChangeLog]:
        query = select(ChangeLog).order_by(ChangeLog.changed_at.desc(), ChangeLog.id.desc()).limit(limit)
        if change_type:
            query = query.where(ChangeLog.change_type == change_type)
        with self._session_factory() as db:
            return list(db.execute(query).scalars().all())
