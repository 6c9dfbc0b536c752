"""Sandbox middleware — serve sandbox requests as the demo principal.

Learn: Runs before routing. When sandbox mode is available and requested
(see jotter.auth.sandbox) it attaches the fixed sandbox principal to
request.state.auth with is_sandbox=True. The auth gate then admits the
request without looking at the Authorization header.

Requests that do not ask for sandbox mode, or ask for it in production
without the override, pass through untouched and are gated as usual.
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from jotter.auth.principal import SANDBOX_PRINCIPAL, RequestContext
from jotter.auth.sandbox import sandbox_active
from jotter.config import Settings

logger = structlog.get_logger()


class SandboxMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, settings: Settings):
        super().__init__(app)
        self.settings = settings

    async def dispatch(self, request: Request, call_next) -> Response:
        if sandbox_active(request, self.settings):
            request.state.auth = RequestContext(
                principal=SANDBOX_PRINCIPAL, is_sandbox=True
            )
            logger.info("sandbox.activated", via="middleware")
        return await call_next(request)
