"""QR credential issuance for residents and their visitors.

Residents are addressed by their local code everywhere in this module. The
vendor's dynamic-QR endpoint identifies a person by `employeeID`, which is
the personCode we registered on creation (the local code), so the request is
keyed by local code; the vendor person id is still required to be present
as proof the resident was synced. Visitor registration names the host by
the vendor person id (`receptionistId`), which is that endpoint's contract.
"""

import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone

from .dates import format_vendor_time
from .errors import NotSynced, ValidationError, VendorError
from .models import Resident
from .residents import GENDER_UNKNOWN, ResidentSyncEngine
from .schemas import ResidentCredential, VisitorPass, split_person_name
from .vendor import VendorClient

logger = logging.getLogger(__name__)

# Dynamic QR: valid 60 minutes, opens once
QR_VALIDITY = 60
QR_OPEN_LOCK_TIMES = 1
QR_TYPE = 0

# Visitor window: starts shortly after registration, lasts one day
VISIT_START_BUFFER = timedelta(minutes=1)
VISIT_DURATION = timedelta(days=1)
VISIT_PURPOSE_BUSINESS = 0
VISITOR_GROUP = "Visitors"

QRDecoder = Callable[[str], str]


def fallback_visitor_token(appoint_record_id) -> str:
    """Stable display token used when the QR image cannot be decoded."""
    return f"VISITOR_{appoint_record_id}"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IdentityIssuer:
    """Requests short-lived QR credentials from the vendor."""

    def __init__(
        self,
        residents: ResidentSyncEngine,
        vendor: VendorClient,
        *,
        decoder: QRDecoder | None = None,
        clock: Callable[[], datetime] = _utc_now,
        tz=None,
    ):
        self.residents = residents
        self.vendor = vendor
        self.decoder = decoder
        self.clock = clock
        self.tz = tz

    def _synced_host(self, owner_id: str) -> Resident:
        row = self.residents.find_active(owner_id)
        if not row.synced:
            raise NotSynced(
                "Resident not synced with the access-control system; recreate the resident",
                owner_id=row.local_code,
            )
        return row

    async def issue_resident_credential(self, owner_id: str, unit_id: str | None = None) -> ResidentCredential:
        row = self._synced_host(owner_id)
        if not row.local_code.isdigit():
            raise ValidationError("Resident local code is not numeric", owner_id=row.local_code)

        payload = {
            "data": {
                "employeeID": row.local_code,
                "validity": QR_VALIDITY,
                "openLockTimes": QR_OPEN_LOCK_TIMES,
                "qrType": QR_TYPE,
            }
        }
        result = await self.vendor.dynamic_qr(payload)
        if not result.ok:
            logger.error(f"Dynamic QR failed for {row.local_code}: code={result.code} msg={result.message}")
            raise result.to_error("issue resident QR code")

        qr_code = result.data.get("qrcode") if isinstance(result.data, dict) else None
        if not qr_code:
            raise VendorError("Vendor response did not include a QR code", vendor_code=result.code)

        if unit_id and unit_id != row.unit_id:
            logger.warning(f"Credential for {row.local_code} requested with unit {unit_id}, registered unit {row.unit_id}")

        logger.info(f"Resident credential issued for {row.local_code}")
        return ResidentCredential(
            id=str(row.id),
            owner_id=row.local_code,
            owner_type=row.kind,
            unit_id=row.unit_id,
            qr_code=str(qr_code),
        )

    async def issue_visitor_credential(
        self,
        owner_id: str,
        visitor_name: str,
        visit_date: date | str | None = None,
        unit_id: str | None = None,
    ) -> VisitorPass:
        """Register a visitor against a host resident.

        The window sent to the vendor is always now + 1 minute for one day.
        `visit_date` is only echoed back.
        """
        host = self._synced_host(owner_id)
        name = visitor_name.strip()
        if not name:
            raise ValidationError("Visitor name is required")

        start = self.clock() + VISIT_START_BUFFER
        end = start + VISIT_DURATION
        visit_start = format_vendor_time(start, self.tz)
        visit_end = format_vendor_time(end, self.tz)

        given, family = split_person_name(name)
        payload = {
            "receptionistId": host.vendor_id,
            "visitStartTime": visit_start,
            "visitEndTime": visit_end,
            "visitPurposeType": VISIT_PURPOSE_BUSINESS,
            "visitorInfoList": [{
                "VisitorInfo": {
                    "visitorFamilyName": family,
                    "visitorGivenName": given,
                    "visitorGroupName": VISITOR_GROUP,
                    "gender": GENDER_UNKNOWN,
                }
            }],
        }
        result = await self.vendor.register_visitor(payload)
        if not result.ok:
            logger.error(f"Visitor registration failed for host {host.local_code}: code={result.code} msg={result.message}")
            raise result.to_error("register visitor")

        data = result.data if isinstance(result.data, dict) else {}
        visit_id = data.get("appointRecordId")
        qr_code, decoded = self._visitor_qr_text(data.get("qrCodeImage"), visit_id)

        logger.info(f"Visitor pass {visit_id} issued for host {host.local_code}")
        return VisitorPass(
            visit_id=str(visit_id) if visit_id is not None else "",
            unit_id=unit_id or host.unit_id,
            owner_id=host.local_code,
            owner_type=host.kind,
            visitor_name=name,
            visit_date=visit_date.isoformat() if isinstance(visit_date, date) else visit_date,
            visit_start=visit_start,
            visit_end=visit_end,
            qr_code=qr_code,
            qr_code_decoded=decoded,
        )

    def _visitor_qr_text(self, image: str | None, visit_id) -> tuple[str, bool]:
        if not image or self.decoder is None:
            return fallback_visitor_token(visit_id), False
        try:
            text = self.decoder(image)
        except Exception as e:
            # Decoder is an external black box; any failure means "use the fallback"
            logger.warning(f"QR decoding failed for visit {visit_id}: {e}")
            return fallback_visitor_token(visit_id), False
        if not text:
            return fallback_visitor_token(visit_id), False
        return str(text), True
