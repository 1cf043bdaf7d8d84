"""
Fixed-window, per-IP rate limiting for the public endpoints.
Public status pages poll, so the limit is generous.
"""
import logging
import threading
import time
from typing import Dict, Optional, Tuple

from fastapi import HTTPException, Request, status

from salonqueue.core.config import settings

logger = logging.getLogger(__name__)

# {client_ip: (request_count, window_started_at)}
_rate_windows: Dict[str, Tuple[int, float]] = {}
_rate_lock = threading.Lock()

CLEANUP_INTERVAL = 60  # seconds between sweeps of expired windows
_last_cleanup = 0.0


def reset_rate_limits() -> None:
    global _last_cleanup
    with _rate_lock:
        _rate_windows.clear()
        _last_cleanup = 0.0


def cleanup_expired_windows(now: Optional[float] = None) -> int:
    """Drop windows that have run out; runs at most once per CLEANUP_INTERVAL."""
    global _last_cleanup
    now = time.monotonic() if now is None else now

    with _rate_lock:
        if now - _last_cleanup < CLEANUP_INTERVAL:
            return 0
        expired = [ip for ip, (_, started) in _rate_windows.items() if now - started > settings.rate_limit_window]
        for ip in expired:
            del _rate_windows[ip]
        _last_cleanup = now

    if expired:
        logger.debug(f"[RateLimit] Cleaned up {len(expired)} expired window(s)")
    return len(expired)


def basic_rate_limiter(request: Request) -> None:
    """Dependency that rejects a client once it exceeds the window quota."""
    if not settings.rate_limit_enabled:
        return

    ip = request.client.host if request.client else "unknown"
    now = time.monotonic()
    cleanup_expired_windows(now)

    with _rate_lock:
        count, started = _rate_windows.get(ip, (0, now))
        if now - started > settings.rate_limit_window:
            count, started = 0, now
        count += 1
        _rate_windows[ip] = (count, started)

    if count > settings.rate_limit_requests:
        logger.warning(f"[RateLimit] {ip} exceeded {settings.rate_limit_requests} requests")
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please try again later."
        )
