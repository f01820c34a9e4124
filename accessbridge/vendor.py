"""Signed HTTP client for the vendor access-control platform.

All vendor responses share the envelope `{"code": ..., "msg": ..., "data": ...}`
where code "0" means success. `VendorClient.call` never raises for vendor or
transport failures: it returns a `VendorResult` and the caller decides what a
failure means. Missing configuration is the only exception that escapes.
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from .config import ConfigStore
from .errors import ConfigurationError, VendorError, VendorUnavailable
from .schemas import VendorProbe
from .signing import RequestSigner

logger = logging.getLogger(__name__)

VENDOR_TIMEOUT_SECONDS = 10.0
CONNECTION_ERROR = "CONNECTION_ERROR"

# Vendor OpenAPI paths
VERSION_PATH = "/artemis/api/common/v1/version"
PERSON_ADD_PATH = "/artemis/api/resource/v1/person/single/add"
PERSON_DELETE_PATH = "/artemis/api/resource/v1/person/single/delete"
DYNAMIC_QR_PATH = "/artemis/api/resource/v1/person/dynamicqrcode/get"
VISITOR_REGISTER_PATH = "/artemis/api/visitor/v1/registerment"


@dataclass(frozen=True)
class VendorResult:
    """Normalized outcome of one vendor call."""

    ok: bool
    data: Any = None
    code: str | None = None
    message: str | None = None
    transport_error: bool = False

    @classmethod
    def success(cls, data: Any, message: str | None = None) -> "VendorResult":
        return cls(ok=True, data=data, code="0", message=message)

    @classmethod
    def failure(cls, code: str | None, message: str | None, data: Any = None) -> "VendorResult":
        return cls(ok=False, data=data, code=code, message=message)

    @classmethod
    def unavailable(cls, message: str) -> "VendorResult":
        return cls(ok=False, code=CONNECTION_ERROR, message=message, transport_error=True)

    def to_error(self, action: str) -> VendorError | VendorUnavailable:
        """Exception describing this failure, for layers that raise."""
        if self.transport_error:
            return VendorUnavailable(f"Vendor unreachable while trying to {action}: {self.message}")
        return VendorError(
            f"Vendor rejected request to {action}: {self.message}",
            vendor_code=self.code,
        )


def normalize_envelope(payload: Any) -> VendorResult:
    """Classify a decoded vendor response body."""
    if not isinstance(payload, dict):
        return VendorResult.unavailable("Malformed vendor response: expected a JSON object")

    code = payload.get("code")
    message = payload.get("msg")
    # Compare on the zero value, not truthiness: False/""/None are failures
    if code is not None and not isinstance(code, bool) and str(code) == "0":
        data = payload.get("data")
        return VendorResult.success(data if data is not None else payload, message)
    return VendorResult.failure(None if code is None else str(code), message, payload.get("data"))


class VendorClient:
    """Issues signed requests using the current ConfigStore settings."""

    def __init__(
        self,
        config: ConfigStore,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = VENDOR_TIMEOUT_SECONDS,
    ):
        self.config = config
        self._transport = transport
        self._timeout = timeout
        self._insecure_warned: set[str] = set()

    async def call(self, path: str, body: Any = None, method: str | None = None) -> VendorResult:
        creds = self.config.vendor_credentials()
        request_method = (method or ("POST" if body is not None else "GET")).upper()
        signer = RequestSigner(creds.app_key, creds.app_secret)
        signed = signer.sign(request_method, path, body, user_id=creds.user_id)
        url = f"{creds.base_url}{path}"

        if not creds.verify_ssl and creds.base_url not in self._insecure_warned:
            logger.warning(f"TLS certificate verification is DISABLED for vendor at {creds.base_url}")
            self._insecure_warned.add(creds.base_url)

        logger.debug(f"Vendor request {request_method} {path}")

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                verify=creds.verify_ssl,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    request_method, url, headers=signed.headers, content=signed.body
                )
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as e:
            logger.error(f"Vendor request timed out: {request_method} {path}: {e}")
            return VendorResult.unavailable(f"Timeout after {self._timeout:.0f}s")
        except httpx.HTTPStatusError as e:
            logger.error(f"Vendor returned HTTP {e.response.status_code} for {path}")
            return VendorResult.unavailable(f"HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.error(f"Vendor connection failed: {request_method} {path}: {e}")
            return VendorResult.unavailable(str(e) or type(e).__name__)
        except ValueError as e:
            logger.error(f"Vendor response for {path} is not JSON: {e}")
            return VendorResult.unavailable("Malformed vendor response: not JSON")

        result = normalize_envelope(payload)
        if result.ok:
            logger.debug(f"Vendor response OK for {path}")
        elif result.transport_error:
            logger.error(f"Vendor response for {path} unusable: {result.message}")
        else:
            logger.warning(f"Vendor API error on {path}: code={result.code} msg={result.message}")
        return result

    # Typed endpoint helpers

    async def probe_version(self) -> VendorResult:
        """Bodyless POST to the version endpoint (connectivity check)."""
        return await self.call(VERSION_PATH, None, "POST")

    async def add_person(self, payload: dict) -> VendorResult:
        return await self.call(PERSON_ADD_PATH, payload)

    async def delete_person(self, person_id: str) -> VendorResult:
        return await self.call(PERSON_DELETE_PATH, {"personId": person_id})

    async def dynamic_qr(self, payload: dict) -> VendorResult:
        return await self.call(DYNAMIC_QR_PATH, payload)

    async def register_visitor(self, payload: dict) -> VendorResult:
        return await self.call(VISITOR_REGISTER_PATH, payload)


async def probe_connection(client: VendorClient) -> VendorProbe:
    """Connectivity check for operators. Never raises."""
    try:
        result = await client.probe_version()
    except ConfigurationError as e:
        return VendorProbe(
            success=False, connected=False,
            message="Vendor configuration incomplete", error=e.message,
        )
    if result.ok:
        return VendorProbe(
            success=True, connected=True, version=result.data,
            message="Vendor connection successful",
        )
    return VendorProbe(
        success=False, connected=False,
        message="Failed to connect to vendor", error=result.message or result.code,
    )
