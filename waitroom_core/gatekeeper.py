"""
GateKeeper
==========
Decides whether a request may proceed or must go through the waiting room.

Per request the engine runs:

    parse -> checkout-bust check -> exclusion check -> room resolve
          -> signature verify -> {token refresh} -> cookie rebuild -> decide

A GateKeeper holds no per-request state, so one instance can serve any number
of concurrent requests. Checkout-bust notifications run as background tasks
so they never delay the decision; `drain()` waits for any still in flight.
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, List, Optional, Set
from urllib.parse import quote
import structlog

from .config import GateKeeperConfig
from .cookie import decode_cookie, encode_cookie
from .hashing import parse_iso_timestamp, to_unix_timestamp
from .http import ApiClient, ApiClientError, NOT_SUPPLIED
from .models import (
    Action,
    BustState,
    CookieSignature,
    CookieState,
    CookieToken,
    RoomConfig,
    ValidateResult,
)
from .query import NormalizedUrl, normalize_url
from .rooms import is_checkout_buster, match_room
from .signature import (
    CandidateList,
    ExplicitSignature,
    SignatureEvidence,
    SignatureOutcome,
    compute_touched_signature,
    verify_signature,
)

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GateKeeper:
    """
    Admission-control decision engine.

    Usage:
        gatekeeper = GateKeeper(GateKeeperConfig.from_env())

        result = await gatekeeper.validate(
            url="https://shop.example/product?id=1",
            user_agent=request.headers.get("user-agent", ""),
            language=request.headers.get("accept-language", ""),
            ip=client_ip,
            cookie=request.cookies.get("crowdhandler", ""),
        )
    """

    def __init__(
        self,
        config: GateKeeperConfig,
        api_client: Optional[ApiClient] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            config: Gatekeeper configuration
            api_client: API client, built from config if not given
            clock: Returns the current UTC time, overridable for tests

        Raises:
            ConfigurationError: If the exclusion pattern is invalid
        """
        self.config = config
        self._exclusions = config.compile_exclusions()
        self.api = api_client or ApiClient(
            config.api_endpoint,
            config.public_key,
            timeout=config.api_request_timeout,
            room_cache_ttl=config.room_cache_ttl,
        )
        self._clock = clock or _utcnow
        self._notifications: Set[asyncio.Task] = set()

    async def validate(
        self,
        url: str,
        user_agent: str = "",
        language: str = "",
        ip: str = "",
        cookie: str = "",
        room: Optional[RoomConfig] = None,
    ) -> ValidateResult:
        """
        Validate a request against the waiting rooms.

        Args:
            url: Absolute request URL
            user_agent: Visitor user agent
            language: Visitor Accept-Language
            ip: Visitor IP address
            cookie: Raw cookie value from a previous decision, may be empty
            room: Validate against this room instead of looking one up

        Returns:
            ValidateResult for the host to apply

        Raises:
            ConfigurationError: For missing settings
            ApiClientError: When the waiting room API cannot be used
        """
        now = self._clock()
        request = normalize_url(url)
        prior = decode_cookie(cookie)
        active = prior.active_token if prior else None

        token = request.ch_id or (active.token if active else "")

        rooms: List[RoomConfig] = [room] if room is not None else await self.api.get_room_config()

        bust = is_checkout_buster(request.host, request.path_and_query, rooms)
        if bust is BustState.BUSTED:
            self._notify_checkout(request, user_agent, language, ip, token)

        if self._exclusions is not None and self._exclusions.search(request.path):
            return ValidateResult(action=Action.ALLOW, bust_cookie=bust)

        if room is None:
            room = match_room(request.host, request.path_and_query, rooms)
        if room is None:
            return ValidateResult(action=Action.ALLOW, bust_cookie=bust)

        evidence = self._signature_evidence(request, active)
        outcome = SignatureOutcome.FAILED
        if evidence is not None:
            outcome = verify_signature(self.config.private_key, room, token, evidence, now)

        signature = ""
        generated_at = now
        if isinstance(evidence, ExplicitSignature):
            signature = evidence.signature
            generated_at = evidence.requested_at

        if outcome is not SignatureOutcome.SUCCESS:
            response = await self.api.get_token(
                request.target_url,
                user_agent,
                language,
                ip,
                token or NOT_SUPPLIED,
            )

            if not response.promoted:
                logger.info(
                    "visitor_queued",
                    slug=response.slug or room.slug,
                    expired=outcome is SignatureOutcome.FAILED_EXPIRED,
                )
                return ValidateResult(
                    action=Action.REDIRECT,
                    redirect_url=self._waiting_room_url(
                        response.slug or room.slug,
                        request.target_url,
                        request.ch_code,
                        response.token,
                    ),
                    target_url=request.target_url,
                    bust_cookie=bust,
                    token=response.token,
                    code=request.ch_code,
                    expired=outcome is SignatureOutcome.FAILED_EXPIRED,
                )

            token = response.token or token
            signature = response.hash or ""
            generated_at = response.requested or now

        state = self._rebuild_cookie(prior, token, signature, generated_at, now)
        cookie_value = encode_cookie(state)

        if request.redirect_to_clean:
            return ValidateResult(
                action=Action.REDIRECT,
                redirect_url=request.cleaned_url,
                target_url=request.target_url,
                set_cookie=True,
                cookie_value=cookie_value,
                bust_cookie=bust,
                token=token,
                code=request.ch_code,
            )

        return ValidateResult(
            action=Action.ALLOW,
            target_url=request.target_url,
            set_cookie=True,
            cookie_value=cookie_value,
            bust_cookie=bust,
            token=token,
            code=request.ch_code,
        )

    def _signature_evidence(
        self,
        request: NormalizedUrl,
        active: Optional[CookieToken],
    ) -> Optional[SignatureEvidence]:
        # A signature in the URL always wins over the cookie
        if request.ch_id_signature:
            try:
                requested_at = parse_iso_timestamp(request.ch_requested)
            except ValueError:
                logger.warning("requested_timestamp_invalid", value=request.ch_requested[:32])
                return None
            return ExplicitSignature(signature=request.ch_id_signature, requested_at=requested_at)

        if active is not None and active.signatures:
            return CandidateList(
                signatures=list(active.signatures),
                touched=active.touched,
                touched_sig=active.touched_sig,
            )

        return None

    def _notify_checkout(
        self,
        request: NormalizedUrl,
        user_agent: str,
        language: str,
        ip: str,
        token: str,
    ) -> None:
        task = asyncio.create_task(
            self._send_checkout_notice(request.target_url, user_agent, language, ip, token)
        )
        self._notifications.add(task)
        task.add_done_callback(self._notification_done)

    async def _send_checkout_notice(
        self,
        target_url: str,
        user_agent: str,
        language: str,
        ip: str,
        token: str,
    ) -> None:
        try:
            await self.api.get_token(
                target_url,
                user_agent,
                language,
                ip,
                token or NOT_SUPPLIED,
            )
        except ApiClientError as e:
            logger.warning("checkout_bust_notify_failed", error=str(e))

    def _notification_done(self, task: asyncio.Task) -> None:
        self._notifications.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("checkout_bust_notify_crashed", error=repr(error))

    async def drain(self) -> None:
        """Wait for checkout notifications started on the running loop."""
        loop = asyncio.get_running_loop()
        pending = [t for t in self._notifications if t.get_loop() is loop]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _waiting_room_url(self, slug: str, target_url: str, code: str, token: str) -> str:
        return (
            f"{self.config.waiting_room_endpoint}/{slug}"
            f"?url={quote(target_url, safe='')}"
            f"&ch-code={quote(code or '', safe='')}"
            f"&ch-id={quote(token or '', safe='')}"
            f"&ch-public-key={quote(self.config.public_key, safe='')}"
        )

    def _rebuild_cookie(
        self,
        prior: Optional[CookieState],
        token: str,
        signature: str,
        generated_at: datetime,
        now: datetime,
    ) -> CookieState:
        tokens = list(prior.tokens) if prior else []
        touched = to_unix_timestamp(now)
        touched_sig = compute_touched_signature(self.config.private_key, touched)
        last = tokens[-1] if tokens else None

        if last is None or last.token != token:
            # New identity: the old signature history no longer applies
            signatures = [CookieSignature(gen=generated_at, sig=signature)] if signature else []
            tokens = [
                CookieToken(
                    token=token,
                    touched=touched,
                    touched_sig=touched_sig,
                    signatures=signatures,
                )
            ]
        else:
            signatures = list(last.signatures)
            if signature and not any(s.sig == signature for s in signatures):
                signatures.append(CookieSignature(gen=generated_at, sig=signature))
            tokens[-1] = last.model_copy(
                update={"touched": touched, "touched_sig": touched_sig, "signatures": signatures}
            )

        return CookieState(integration=self.config.integration, tokens=tokens)
