import math
import time
from typing import Callable
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from survey_recorder.core.logger import get_logger

logger = get_logger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed-window request limit per client IP for paths under `path_prefix`."""

    def __init__(
        self,
        app: ASGIApp,
        max_requests: int = 100,
        window_seconds: float = 900.0,
        path_prefix: str = "/api",
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.path_prefix = path_prefix
        self.clock = clock
        self._windows: dict[str, tuple[float, int]] = {}
        self._last_sweep = clock()

    def _client_ip(self, request: Request) -> str:
        return request.client.host if request.client else "unknown"

    def _sweep(self, now: float) -> None:
        """Forget clients whose window has ended. Runs at most once per window."""
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        expired = [ip for ip, (started, _) in self._windows.items() if now - started >= self.window_seconds]
        for ip in expired:
            del self._windows[ip]

    def _hit(self, ip: str, now: float) -> tuple[float, int]:
        self._sweep(now)
        started, count = self._windows.get(ip, (now, 0))
        if now - started >= self.window_seconds:
            started, count = now, 0
        count += 1
        self._windows[ip] = (started, count)
        return started, count

    async def dispatch(self, request: Request, call_next) -> Response:
        if not request.url.path.startswith(self.path_prefix):
            return await call_next(request)

        now = self.clock()
        ip = self._client_ip(request)
        started, count = self._hit(ip, now)

        if count > self.max_requests:
            retry_after = math.ceil(self.window_seconds - (now - started))
            logger.warning(f"Rate limit exceeded for {ip}", extra={"path": request.url.path})
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Too many requests",
                    "message": "Too many requests from this IP, please try again later.",
                },
                headers={"Retry-After": str(max(retry_after, 1))},
            )
        return await call_next(request)
