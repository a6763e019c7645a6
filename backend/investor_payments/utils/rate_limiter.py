"""
Memory-based fixed-window rate limiter for expensive endpoints.
The reconciliation sweep fans out one gateway call per transaction, so each
client may only trigger it a few times per window.
"""
import time
from typing import Dict, Tuple

from fastapi import Request, HTTPException

# In-memory storage: {key: (window_start, count)}
_rate_limit_store: Dict[str, Tuple[float, int]] = {}


def reset_rate_limits():
    _rate_limit_store.clear()


def rate_limit(requests: int, window: int, scope: str = "default"):
    """
    Dependency factory for rate limiting, keyed by scope and client IP.
    Example: Depends(rate_limit(requests=5, window=60, scope="sync"))
    """
    def limiter(request: Request):
        ip = request.client.host if request.client else "unknown"
        key = f"{scope}:{ip}"
        now = time.time()

        window_start, count = _rate_limit_store.get(key, (now, 0))

        # Reset window if expired
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
