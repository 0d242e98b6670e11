"""Compact HMAC-SHA256 signing for storefront transaction payloads."""

from __future__ import annotations

import base64
import hmac
import json
from hashlib import sha256
from typing import Any, Mapping

ALGORITHM = "HS256"


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _signature(secret: str, signing_input: bytes) -> bytes:
    return hmac.new(secret.encode("utf-8"), signing_input, sha256).digest()


def sign_payload(claims: Mapping[str, Any], secret: str) -> str:
    """Return ``header.payload.signature`` for ``claims``."""

    header = {"alg": ALGORITHM, "typ": "JWS"}
    header_segment = _b64encode(json.dumps(header, separators=(",", ":")).encode("utf-8"))
    payload_segment = _b64encode(
        json.dumps(dict(claims), separators=(",", ":"), sort_keys=True, default=str).encode("utf-8")
    )
    signing_input = f"{header_segment}.{payload_segment}".encode("ascii")
    return f"{header_segment}.{payload_segment}.{_b64encode(_signature(secret, signing_input))}"


def verify_payload(token: str, secret: str) -> dict[str, Any]:
    """Check the signature of ``token`` and return its claims.

    Raises ``ValueError`` for malformed tokens, foreign algorithms and
    signature mismatches.
    """

    try:
        header_segment, payload_segment, signature_segment = token.split(".")
        header = json.loads(_b64decode(header_segment))
        signature = _b64decode(signature_segment)
    except (ValueError, TypeError) as exc:
        raise ValueError("malformed signed payload") from exc
    if not isinstance(header, dict) or header.get("alg") != ALGORITHM:
        raise ValueError("unexpected signing algorithm")

    expected = _signature(secret, f"{header_segment}.{payload_segment}".encode("ascii"))
    if not hmac.compare_digest(signature, expected):
        raise ValueError("invalid signature")

    try:
        payload = json.loads(_b64decode(payload_segment))
    except ValueError as exc:
        raise ValueError("malformed signed payload") from exc
    if not isinstance(payload, dict):
        raise ValueError("payload must be an object")
    return payload


def peek_payload(token: str) -> dict[str, Any]:
    """Decode the claims of ``token`` without checking its signature.

    Only for labelling rejected transactions in logs and audit records; the
    result must never be trusted. Returns an empty dict if undecodable.
    """

    try:
        payload = json.loads(_b64decode(token.split(".")[1]))
    except (ValueError, IndexError):
        return {}
    return payload if isinstance(payload, dict) else {}


__all__ = ["peek_payload", "sign_payload", "verify_payload"]
