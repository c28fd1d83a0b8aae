"""
Rate limiting middleware for API endpoints
"""
import time
import logging
from collections import deque
from typing import Deque, Dict, Optional

import jwt
from fastapi import Request, HTTPException

from app.config import settings

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    In-memory sliding-window rate limiter, per process

    Clients are keyed by the user id of a verified bearer token, else by IP.
    """

    def __init__(self, requests_per_minute: int = 60, requests_per_hour: int = 1000):
        self.limits = ((60, requests_per_minute), (3600, requests_per_hour))

        # {client_id: deque of request timestamps within the last hour}
        self.history: Dict[str, Deque[float]] = {}

    def _get_client_id(self, request: Request) -> str:
        """Extract client identifier from request"""
        authorization = request.headers.get("authorization", "")
        if authorization.lower().startswith("bearer "):
            try:
                payload = jwt.decode(
                    authorization[7:],
                    settings.JWT_SECRET,
                    algorithms=[settings.JWT_ALGORITHM]
                )
                if payload.get("sub"):
                    return f"user:{payload['sub']}"
            except jwt.PyJWTError:
                # Unverified tokens share the caller's IP budget
                pass

        return "ip:" + (request.client.host if request.client else "unknown")

    def _cleanup_old_entries(self, now: float) -> None:
        """Drop timestamps older than the longest window and forget idle clients"""
        cutoff = now - max(window for window, _ in self.limits)

        for client_id in list(self.history.keys()):
            timestamps = self.history[client_id]
            while timestamps and timestamps[0] <= cutoff:
                timestamps.popleft()

            # Remove empty entries
            if not timestamps:
                del self.history[client_id]

    def _exceeded(self, client_id: str, now: float) -> Optional[int]:
        """Return the violated window in seconds, or None"""
        timestamps = self.history.get(client_id, ())

        for window, limit in self.limits:
            if sum(1 for ts in timestamps if ts > now - window) >= limit:
                return window
        return None

    async def check_rate_limit(self, request: Request) -> None:
        """
        Check if request exceeds rate limits

        Raises:
            HTTPException: 429 if rate limit exceeded
        """
        client_id = self._get_client_id(request)
        now = time.time()

        self._cleanup_old_entries(now)

        window = self._exceeded(client_id, now)
        if window is not None:
            unit = "minute" if window == 60 else "hour"
            limit = dict(self.limits)[window]
            logger.warning(f"Rate limit exceeded ({unit}): {client_id}")
            raise HTTPException(
                status_code=429,
                detail={
                    "error": "rate_limit_exceeded",
                    "message": f"Too many requests. Limit: {limit} requests per {unit}",
                    "retry_after": window
                }
            )

        self.history.setdefault(client_id, deque()).append(now)

    def reset(self) -> None:
        self.history.clear()


# Global instance
rate_limiter = RateLimiter(
    requests_per_minute=settings.RATE_LIMIT_PER_MINUTE,
    requests_per_hour=settings.RATE_LIMIT_PER_HOUR
)
