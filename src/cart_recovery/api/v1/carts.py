"""Cart activity, identity merge and conversion endpoints."""

from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from cart_recovery.api.v1.deps import caller_identity, get_engine, to_http_exception
from cart_recovery.domain.cart import Cart, CartState, LineItem
from cart_recovery.exceptions import CartRecoveryError
from cart_recovery.services.cart_service import CartService, CartStatus
from cart_recovery.services.factory import Engine

router = APIRouter()


# =============================================================================
# Models
# =============================================================================


class LineItemIn(BaseModel):
    """A cart line as sent by the storefront."""

    product_ref: str = Field(..., min_length=1, max_length=255, description="Product identifier")
    variant_ref: str | None = Field(None, max_length=255, description="Variant identifier")
    quantity: int = Field(..., gt=0, description="Units in the cart")
    unit_price: Decimal = Field(..., ge=0, decimal_places=2, description="Price per unit at the time of sync")


class CartSyncRequest(BaseModel):
    """Full cart state. Replaces whatever was stored for the session."""

    session_key: str = Field(..., min_length=1, max_length=255)
    owner_id: str | None = Field(None, max_length=255)
    currency: str = Field(..., min_length=3, max_length=3)
    line_items: list[LineItemIn] = Field(default_factory=list, max_length=200)


class CartMergeRequest(BaseModel):
    session_key: str = Field(..., min_length=1, max_length=255)
    owner_id: str = Field(..., min_length=1, max_length=255)


class ConversionRequest(BaseModel):
    """Checkout-completion signal. Needs a session key or a cart id."""

    order_ref: str = Field(..., min_length=1, max_length=255)
    session_key: str | None = None
    cart_id: str | None = None


class LineItemOut(BaseModel):
    product_ref: str
    variant_ref: str | None
    quantity: int
    unit_price: str
    subtotal: str


class CartResponse(BaseModel):
    id: str
    session_key: str
    owner_id: str | None
    currency: str
    line_items: list[LineItemOut]
    item_count: int
    total_amount: str
    last_activity_at: str
    converted: bool
    conversion_ref: str | None


class CartStatusResponse(BaseModel):
    cart: CartResponse
    state: CartState
    idle_seconds: int


class ConversionResponse(BaseModel):
    cart: CartResponse
    newly_converted: bool
    reminders_sent: int


def serialize_cart(cart: Cart) -> CartResponse:
    return CartResponse(
        id=cart.id,
        session_key=cart.session_key,
        owner_id=cart.owner_id,
        currency=cart.currency,
        line_items=[
            LineItemOut(
                product_ref=item.product_ref,
                variant_ref=item.variant_ref,
                quantity=item.quantity,
                unit_price=str(item.unit_price),
                subtotal=str(item.subtotal),
            )
            for item in cart.line_items
        ],
        item_count=cart.item_count,
        total_amount=str(cart.total_amount),
        last_activity_at=cart.last_activity_at.isoformat(),
        converted=cart.converted,
        conversion_ref=cart.conversion_ref,
    )


def serialize_status(status: CartStatus) -> CartStatusResponse:
    return CartStatusResponse(
        cart=serialize_cart(status.cart),
        state=status.state,
        idle_seconds=max(0, int(status.idle_for.total_seconds())),
    )


def get_cart_service(engine: Engine = Depends(get_engine)) -> CartService:
    return engine.cart_service


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/sync", response_model=CartStatusResponse)
async def sync_cart(
    request: CartSyncRequest,
    service: CartService = Depends(get_cart_service),
) -> CartStatusResponse:
    """
    Record cart activity.

    The storefront sends the complete cart on every change. The stored cart
    is replaced, its total recomputed and its activity clock reset. An empty
    item list is valid and leaves an empty cart.
    """
    try:
        line_items = [
            LineItem(
                product_ref=item.product_ref,
                variant_ref=item.variant_ref,
                quantity=item.quantity,
                unit_price=item.unit_price,
            )
            for item in request.line_items
        ]
        status = await service.sync_cart(
            session_key=request.session_key,
            line_items=line_items,
            currency=request.currency,
            owner_id=request.owner_id,
        )
    except CartRecoveryError as e:
        raise to_http_exception(e) from e
    except ValueError as e:
        raise HTTPException(status_code=422, detail={"code": "invalid_cart", "message": str(e)}) from e

    return serialize_status(status)


@router.post("/merge", response_model=CartStatusResponse)
async def merge_carts(
    request: CartMergeRequest,
    service: CartService = Depends(get_cart_service),
) -> CartStatusResponse:
    """
    Merge the session's cart with carts the identity already owns.

    Called after login. Quantities of matching lines are summed and every
    line is repriced from the catalog.
    """
    try:
        status = await service.merge_on_login(request.session_key, request.owner_id)
    except CartRecoveryError as e:
        raise to_http_exception(e) from e
    return serialize_status(status)


@router.post("/conversions", response_model=ConversionResponse)
async def record_conversion(
    request: ConversionRequest,
    service: CartService = Depends(get_cart_service),
) -> ConversionResponse:
    """Mark a cart converted. Repeated signals for the same cart are no-ops."""
    if not request.session_key and not request.cart_id:
        raise HTTPException(
            status_code=422,
            detail={"code": "invalid_request", "message": "session_key or cart_id is required"},
        )
    try:
        result = await service.record_conversion(
            order_ref=request.order_ref,
            session_key=request.session_key,
            cart_id=request.cart_id,
        )
    except CartRecoveryError as e:
        raise to_http_exception(e) from e

    return ConversionResponse(
        cart=serialize_cart(result.cart),
        newly_converted=result.newly_converted,
        reminders_sent=result.reminders_sent,
    )


@router.get("/{session_key}", response_model=CartStatusResponse)
async def get_cart_status(
    session_key: str,
    caller_id: str | None = Depends(caller_identity),
    service: CartService = Depends(get_cart_service),
) -> CartStatusResponse:
    """
    Current cart, lifecycle state and idle time.

    Carts linked to an identity are only visible to that identity.
    """
    try:
        status = await service.get_status(session_key, caller_id)
    except CartRecoveryError as e:
        raise to_http_exception(e) from e
    return serialize_status(status)
