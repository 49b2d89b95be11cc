"""Shared FastAPI dependencies and error translation."""

import hmac

from fastapi import Depends, HTTPException, Request

from cart_recovery.config import Settings, get_settings
from cart_recovery.exceptions import (
    CartConvertedError,
    CartNotFoundError,
    CartRecoveryError,
    CurrencyMismatchError,
    MalformedCartError,
    OwnershipError,
    PricingUnavailableError,
    RecoveryTokenExpiredError,
    RecoveryTokenInvalidError,
)
from cart_recovery.services.factory import Engine, build_engine

ERROR_STATUS: dict[type[CartRecoveryError], int] = {
    CartNotFoundError: 404,
    OwnershipError: 403,
    CartConvertedError: 409,
    CurrencyMismatchError: 409,
    RecoveryTokenInvalidError: 400,
    RecoveryTokenExpiredError: 410,
    PricingUnavailableError: 503,
    MalformedCartError: 500,
}

_engine: Engine | None = None


def get_engine() -> Engine:
    """Get or create the process-wide engine."""
    global _engine
    if _engine is None:
        _engine = build_engine(get_settings())
    return _engine


async def close_engine() -> None:
    """Stop the scheduler, close owned clients and forget the engine."""
    global _engine
    if _engine is None:
        return
    engine, _engine = _engine, None
    await engine.scheduler.stop()
    await engine.aclose()


def to_http_exception(error: CartRecoveryError) -> HTTPException:
    status_code = 500
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS:
            status_code = ERROR_STATUS[cls]
            break
    return HTTPException(
        status_code=status_code,
        detail={"code": error.code, "message": str(error)},
    )


def caller_identity(request: Request, settings: Settings = Depends(get_settings)) -> str | None:
    """Identity asserted by the upstream auth layer, if any."""
    return request.headers.get(settings.user_id_header) or None


def require_admin(request: Request, settings: Settings = Depends(get_settings)) -> None:
    provided = request.headers.get(settings.api_key_header, "")
    if not settings.admin_api_key or not hmac.compare_digest(provided, settings.admin_api_key):
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
