"""Request signing for the vendor OpenAPI gateway.

Every vendor call carries an HMAC-SHA256 signature over a newline-joined
canonical string:

    METHOD
    Accept
    Content-MD5        (empty without body)
    Content-Type       (empty without body)
    Date               (RFC 1123)
    x-ca-key:<key>
    x-ca-nonce:<nonce>
    x-ca-timestamp:<ms epoch>
    /uri/path

A bodyless POST (the version probe) is signed over the short form
`METHOD`, `*/*`, `x-ca-key:<key>`, path. The gateway verifies it that way;
do not "fix" it into the long form.
"""

import base64
import hashlib
import hmac
import json
import time
import uuid
from dataclasses import dataclass, field
from email.utils import formatdate

from .errors import ConfigurationError

ACCEPT = "application/json"
CONTENT_TYPE = "application/json;charset=UTF-8"
SIGNATURE_HEADERS = "x-ca-key,x-ca-nonce,x-ca-timestamp"
USER_HEADER = "userId"


def serialize_body(body) -> bytes:
    """Compact JSON bytes. The digest is computed over exactly these bytes."""
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def content_md5(body_bytes: bytes) -> str:
    return base64.b64encode(hashlib.md5(body_bytes).digest()).decode("ascii")


@dataclass
class SignedRequest:
    """One outbound vendor request, ready to send."""

    method: str
    path: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | None = None


class RequestSigner:
    """Builds canonical strings and signatures for one app key/secret pair."""

    def __init__(self, app_key: str, app_secret: str):
        if not app_key or not app_secret:
            raise ConfigurationError("Vendor app key and secret are required for signing")
        self.app_key = app_key
        self._secret = app_secret.encode("utf-8")

    def string_to_sign(self, method: str, path: str, headers: dict[str, str], has_body: bool) -> str:
        method = method.upper()
        if method == "POST" and not has_body:
            parts = [method, "*/*", f"x-ca-key:{self.app_key}", path]
        else:
            parts = [
                method,
                headers.get("Accept") or "*/*",
                headers.get("Content-MD5", "") if has_body else "",
                headers.get("Content-Type", "") if has_body else "",
                headers.get("Date") or formatdate(usegmt=True),
                f"x-ca-key:{self.app_key}",
                f"x-ca-nonce:{headers['X-Ca-Nonce']}",
                f"x-ca-timestamp:{headers['X-Ca-Timestamp']}",
                path,
            ]
        return "\n".join(parts)

    def signature(self, string_to_sign: str) -> str:
        digest = hmac.new(self._secret, string_to_sign.encode("utf-8"), hashlib.sha256).digest()
        return base64.b64encode(digest).decode("ascii")

    def sign(
        self,
        method: str,
        path: str,
        body=None,
        *,
        user_id: str | None = None,
        nonce: str | None = None,
        timestamp: str | None = None,
        date: str | None = None,
    ) -> SignedRequest:
        """Build the full header set and signature for a request.

        `nonce`, `timestamp` and `date` are generated when omitted; pass them
        to reproduce a signature.
        """
        method = method.upper()
        body_bytes = serialize_body(body) if body is not None else None

        headers = {
            "Accept": ACCEPT,
            "X-Ca-Key": self.app_key,
            "X-Ca-Nonce": nonce or str(uuid.uuid4()),
            "X-Ca-Timestamp": timestamp or str(int(time.time() * 1000)),
            "X-Ca-Signature-Headers": SIGNATURE_HEADERS,
        }
        if user_id:
            headers[USER_HEADER] = user_id
        if body_bytes is not None:
            headers["Content-Type"] = CONTENT_TYPE
            headers["Content-MD5"] = content_md5(body_bytes)
        if not (method == "POST" and body_bytes is None):
            # Long form signs Date, so it must travel with the request
            headers["Date"] = date or formatdate(usegmt=True)

        canonical = self.string_to_sign(method, path, headers, has_body=body_bytes is not None)
        headers["X-Ca-Signature"] = self.signature(canonical)
        return SignedRequest(method=method, path=path, headers=headers, body=body_bytes)
