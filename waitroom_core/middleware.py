"""
Waiting Room Middleware
=======================
Starlette/FastAPI integration that puts a GateKeeper in front of every route.

Usage:
    from waitroom_core.middleware import WaitingRoomMiddleware

    app.add_middleware(WaitingRoomMiddleware, fail_trust=True)
"""

from typing import Iterable, Optional
from urllib.parse import quote
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import RedirectResponse, Response
import structlog

from .config import GateKeeperConfig
from .cookie import escape_cookie_value
from .exceptions import ConfigurationError
from .gatekeeper import GateKeeper
from .models import Action

logger = structlog.get_logger(__name__)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Expires": "Fri, 01 Jan 1970 00:00:00 GMT",
    "Pragma": "no-cache",
}

DEFAULT_SKIP_PATHS = ("/health", "/ready", "/metrics")


class WaitingRoomMiddleware(BaseHTTPMiddleware):
    """
    Applies GateKeeper decisions to incoming requests.

    When validation itself fails (API down, bad response) the request is
    either let through (``fail_trust=True``) or sent to the safety net
    waiting room. Configuration errors are always raised.
    """

    def __init__(
        self,
        app,
        gatekeeper: Optional[GateKeeper] = None,
        config: Optional[GateKeeperConfig] = None,
        fail_trust: bool = True,
        debug: bool = False,
        skip_paths: Optional[Iterable[str]] = None,
    ):
        super().__init__(app)
        if gatekeeper is None:
            gatekeeper = GateKeeper(config or GateKeeperConfig.from_env())
        self.gatekeeper = gatekeeper
        self.config = gatekeeper.config
        self.fail_trust = fail_trust
        self.debug = debug
        self.skip_paths = tuple(skip_paths) if skip_paths is not None else DEFAULT_SKIP_PATHS

    def _get_client_ip(self, request: Request) -> str:
        """Extract the visitor IP, preferring the first forwarded address."""
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        client = request.client
        if client:
            return client.host
        return ""

    def _safety_net_url(self, url: str) -> str:
        return (
            f"{self.config.waiting_room_endpoint}/{self.config.safety_net_slug}"
            f"?url={quote(url, safe='')}&ch-code=&ch-id="
            f"&ch-public-key={quote(self.config.public_key, safe='')}"
        )

    def _redirect(self, url: str) -> Response:
        return RedirectResponse(url, status_code=302, headers=NO_CACHE_HEADERS)

    async def dispatch(self, request: Request, call_next):
        if any(request.url.path.startswith(p) for p in self.skip_paths):
            return await call_next(request)

        url = str(request.url)

        try:
            result = await self.gatekeeper.validate(
                url,
                user_agent=request.headers.get("User-Agent", ""),
                language=request.headers.get("Accept-Language", ""),
                ip=self._get_client_ip(request),
                cookie=request.cookies.get(self.config.cookie_name, ""),
            )
        except ConfigurationError:
            raise
        except Exception:
            if self.debug:
                raise
            logger.exception("waiting_room_validation_failed", path=request.url.path)
            if self.fail_trust:
                return await call_next(request)
            return self._redirect(self._safety_net_url(url))

        if result.action is Action.REDIRECT:
            response = self._redirect(result.redirect_url)
        else:
            response = await call_next(request)

        if result.set_cookie and result.cookie_value:
            response.set_cookie(
                self.config.cookie_name,
                escape_cookie_value(result.cookie_value),
                path="/",
            )

        return response
