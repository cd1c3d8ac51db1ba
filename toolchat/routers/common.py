from typing import Optional

from fastapi.responses import JSONResponse


def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


async def check_rate_limit(limiter, identifier: str) -> Optional[JSONResponse]:
    """Return a 429 response when the identifier is over budget, otherwise None."""
    decision = await limiter.check(identifier)
    if decision.allowed:
        return None
    response = error_response(
        429,
        "Too many requests. Please try again later.",
        retryAfter=decision.retry_after,
    )
    response.headers["Retry-After"] = str(decision.retry_after)
    return response
