"""
Signature Verification
======================
Hash-chain signatures binding a token to a room and a generation time.

A signature is:

    sha256(sha256(private_key) + slug + activates_on + token + generated_at)

with both timestamps formatted as ``YYYY-MM-DDTHH:MM:SSZ``. The cookie also
carries a ``touchedSig`` binding the last validation time to the private key,
so a visitor cannot extend a session by editing ``touched``.
"""

import hmac
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Union
import structlog

from .hashing import format_iso_z, from_unix_timestamp, minutes_between, sha256_hex
from .models import CookieSignature, RoomConfig

logger = structlog.get_logger(__name__)


class SignatureOutcome(str, Enum):
    """Result of verifying a visitor's signature."""
    SUCCESS = "success"
    FAILED = "failed"                   # Identity never recognized
    FAILED_EXPIRED = "failed_expired"   # Recognized but stale


@dataclass(frozen=True)
class ExplicitSignature:
    """A signature handed back by the waiting room in the URL."""
    signature: str
    requested_at: datetime


@dataclass(frozen=True)
class CandidateList:
    """Signatures remembered in the visitor's cookie for the active token."""
    signatures: List[CookieSignature] = field(default_factory=list)
    touched: int = 0
    touched_sig: str = ""


SignatureEvidence = Union[ExplicitSignature, CandidateList]


def _room_activation(room: RoomConfig) -> str:
    if room.queue_activates_on is None:
        return ""
    return format_iso_z(room.queue_activates_on)


def compute_signature(
    private_key: str,
    room: RoomConfig,
    token: str,
    generated_at: datetime,
) -> str:
    """
    Compute the signature for a token generated at a given time.

    Args:
        private_key: Account private API key
        room: Room the token was issued for
        token: Visitor token
        generated_at: When the signature was generated

    Returns:
        Hex-encoded SHA-256 signature
    """
    candidate = (
        f"{sha256_hex(private_key)}{room.slug}{_room_activation(room)}"
        f"{token}{format_iso_z(generated_at)}"
    )
    return sha256_hex(candidate)


def compute_touched_signature(private_key: str, touched: int) -> str:
    """Compute the integrity hash for a ``touched`` Unix timestamp."""
    return sha256_hex(f"{sha256_hex(private_key)}{touched}")


def _equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def _verify_explicit(
    private_key: str,
    room: RoomConfig,
    token: str,
    evidence: ExplicitSignature,
    now: datetime,
) -> SignatureOutcome:
    expected = compute_signature(private_key, room, token, evidence.requested_at)
    if not _equal(expected, evidence.signature):
        return SignatureOutcome.FAILED

    if minutes_between(evidence.requested_at, now) < room.timeout:
        return SignatureOutcome.SUCCESS

    logger.info("signature_expired", slug=room.slug, token=token[:8])
    return SignatureOutcome.FAILED_EXPIRED


def _touch_is_fresh(touched: int, now: datetime, timeout: int) -> bool:
    try:
        return minutes_between(from_unix_timestamp(touched), now) < timeout
    except ValueError:
        return False


def _verify_candidates(
    private_key: str,
    room: RoomConfig,
    token: str,
    evidence: CandidateList,
    now: datetime,
) -> SignatureOutcome:
    known = [s.sig for s in evidence.signatures]

    for candidate in reversed(evidence.signatures):
        try:
            expected = compute_signature(private_key, room, token, candidate.gen)
        except ValueError:
            continue
        if not any(_equal(expected, sig) for sig in known):
            continue

        touched_ok = _equal(
            compute_touched_signature(private_key, evidence.touched),
            evidence.touched_sig,
        )
        if touched_ok and _touch_is_fresh(evidence.touched, now, room.timeout):
            return SignatureOutcome.SUCCESS

        logger.info(
            "cookie_session_expired",
            slug=room.slug,
            token=token[:8],
            touched_sig_valid=touched_ok,
        )
        return SignatureOutcome.FAILED_EXPIRED

    return SignatureOutcome.FAILED


def verify_signature(
    private_key: str,
    room: RoomConfig,
    token: str,
    evidence: SignatureEvidence,
    now: datetime,
) -> SignatureOutcome:
    """
    Verify a visitor's signature evidence for a room.

    Args:
        private_key: Account private API key
        room: Room being entered
        token: Resolved visitor token
        evidence: ExplicitSignature from the URL or CandidateList from the cookie
        now: Current time

    Returns:
        SignatureOutcome
    """
    if isinstance(evidence, ExplicitSignature):
        return _verify_explicit(private_key, room, token, evidence, now)
    if isinstance(evidence, CandidateList):
        return _verify_candidates(private_key, room, token, evidence, now)
    raise TypeError(f"Unsupported signature evidence: {type(evidence).__name__}")
