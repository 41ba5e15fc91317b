"""
Webhook signature verification.

The task tracker signs webhook bodies with HMAC-SHA256 using the shared
webhook secret and sends the hex digest (optionally prefixed with
``sha256=``) in a signature header.

Verification is permissive: when no secret is configured, or the request
carries no signature header, the check is reported as not applicable and
the request is accepted.  Task-tracker automations post without a
signature, so the trust boundary for unsigned calls is left to the
deployment.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from typing import Mapping

SIGNATURE_HEADERS = ("x-provider-signature", "x-clickup-signature", "x-signature")


@dataclass(frozen=True)
class SignatureCheck:
    """Outcome of verifying one inbound request."""

    applicable: bool
    valid: bool

    def to_dict(self) -> dict[str, bool]:
        return {"applicable": self.applicable, "valid": self.valid}


def compute_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 digest of `body` keyed with `secret`."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def extract_signature(headers: Mapping[str, str]) -> str | None:
    """Return the first signature header present, if any."""
    for name in SIGNATURE_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return None


def verify_signature(body: bytes, header_signature: str | None, secret: str | None) -> SignatureCheck:
    """Check `header_signature` against the HMAC of the raw body."""
    if not secret or not header_signature:
        return SignatureCheck(applicable=False, valid=True)

    provided = header_signature.strip()
    if provided.lower().startswith("sha256="):
        provided = provided[len("sha256="):]

    expected = compute_signature(body, secret)
    return SignatureCheck(
        applicable=True,
        valid=hmac.compare_digest(expected, provided.lower()),
    )
