"""Scheduled-trigger authorization for the sync and backfill endpoints."""
import hmac
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from metrics_dashboard.config import get_settings

# Paths that trigger writes and require the scheduler's credentials
PROTECTED_PREFIXES = (
    "/sync",
    "/backfill",
)


class CronAuthMiddleware(BaseHTTPMiddleware):
    """
    Accepts ``Authorization: Bearer <CRON_SECRET>`` or the scheduler header
    (``x-vercel-cron: 1`` by default). Everything else on a protected path
    gets 401 before the endpoint runs.
    """

    def __init__(self, app, cron_secret: Optional[str] = None, header_name: Optional[str] = None):
        super().__init__(app)
        settings = get_settings()
        self.cron_secret = cron_secret if cron_secret is not None else settings.cron_secret
        self.header_name = (header_name or settings.cron_header_name).lower()

    def is_authorized(self, request: Request) -> bool:
        if self.cron_secret:
            supplied = request.headers.get("authorization", "")
            if hmac.compare_digest(supplied, f"Bearer {self.cron_secret}"):
                return True

        return request.headers.get(self.header_name) == "1"

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if not any(path == p or path.startswith(p + "/") for p in PROTECTED_PREFIXES):
            return await call_next(request)

        if self.is_authorized(request):
            return await call_next(request)

        return JSONResponse(
            status_code=401,
            content={"error": "Unauthorized"},
        )
