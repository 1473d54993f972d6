"""
Simple memory-based rate limiter, keyed by client IP and route.
In production, use Redis or a dedicated middleware like slowapi.
"""
import threading
import time
from typing import Dict, Tuple

from fastapi import Request, HTTPException

# In-memory storage: {(ip, path): (window_start, count)}
_rate_limit_store: Dict[Tuple[str, str], Tuple[float, int]] = {}
_lock = threading.Lock()


def reset_rate_limits() -> None:
    with _lock:
        _rate_limit_store.clear()


def rate_limit(requests: int, window: int):
    """
    FastAPI dependency for fixed-window rate limiting.
    Example: Depends(rate_limit(requests=30, window=60))
    """
    def limiter(request: Request):
        ip = request.client.host if request.client else "unknown"
        key = (ip, request.url.path)
        now = time.time()

        with _lock:
            window_start, count = _rate_limit_store.get(key, (now, 0))

            if now - window_start > window:
                window_start, count = now, 0

            if count >= requests:
                raise HTTPException(
                    status_code=429,
                    detail=f"Rate limit exceeded. Try again in {int(window - (now - window_start))} seconds.",
                )

            _rate_limit_store[key] = (window_start, count + 1)
        return True

    return limiter
