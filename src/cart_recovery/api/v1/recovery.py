"""Recovery link resolution."""

from fastapi import APIRouter, Depends

from cart_recovery.api.v1.carts import CartStatusResponse, serialize_status
from cart_recovery.api.v1.deps import get_engine, to_http_exception
from cart_recovery.exceptions import CartRecoveryError
from cart_recovery.services.factory import Engine

router = APIRouter()


@router.get("/{token}", response_model=CartStatusResponse)
async def resolve_recovery_link(
    token: str,
    engine: Engine = Depends(get_engine),
) -> CartStatusResponse:
    """
    Resolve a recovery link from a reminder email to its cart.

    Returns 410 once the link has expired, 400 for a tampered or garbled
    token and 404 when the cart no longer exists.
    """
    try:
        cart = await engine.recovery.resolve(token)
    except CartRecoveryError as e:
        raise to_http_exception(e) from e
    return serialize_status(engine.cart_service.status_of(cart))
