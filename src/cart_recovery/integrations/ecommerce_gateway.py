"""HTTP client for the e-commerce gateway.

Implements the identity, catalog and coupon lookups the engine needs.
"""

from decimal import Decimal, InvalidOperation

import httpx
import structlog

from cart_recovery.config import Settings, get_settings
from cart_recovery.exceptions import PricingUnavailableError
from cart_recovery.integrations import CustomerContact

logger = structlog.get_logger()


class EcommerceGatewayClient:
    """Async client for customer contact, product price and coupon lookups."""

    def __init__(self, settings: Settings | None = None, client: httpx.AsyncClient | None = None):
        settings = settings or get_settings()
        self.api_key_header = settings.api_key_header
        self.client = client or httpx.AsyncClient(
            base_url=settings.ecommerce_api_base_url,
            timeout=settings.ecommerce_api_timeout,
            headers={settings.api_key_header: settings.ecommerce_api_key},
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def get_contact(self, owner_id: str) -> CustomerContact | None:
        """Fetch email and reminder consent for a customer.

        Returns None when the customer is unknown. Consent is None when the
        gateway does not report it, which callers treat as not granted.
        """
        response = await self.client.get(f"/api/customers/{owner_id}/contact")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        data = response.json()
        consent = data.get("marketingConsent")
        return CustomerContact(
            owner_id=owner_id,
            email=data.get("email"),
            first_name=data.get("firstName"),
            reminder_consent=consent if isinstance(consent, bool) else None,
        )

    async def get_unit_price(self, product_ref: str, variant_ref: str | None = None) -> Decimal:
        params = {"variant": variant_ref} if variant_ref else None
        try:
            response = await self.client.get(f"/api/products/{product_ref}/price", params=params)
            response.raise_for_status()
            return Decimal(str(response.json()["price"]))
        except (httpx.HTTPError, KeyError, InvalidOperation, ValueError) as e:
            logger.warning(
                "Price lookup failed",
                product_ref=product_ref,
                variant_ref=variant_ref,
                error=str(e),
            )
            raise PricingUnavailableError(f"No current price for {product_ref}") from e

    async def is_coupon_valid(self, code: str) -> bool:
        """Pass-through validity check; any failure counts as invalid."""
        try:
            response = await self.client.get(f"/api/coupons/{code}")
            if response.status_code == 404:
                return False
            response.raise_for_status()
            return bool(response.json().get("valid", False))
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Coupon lookup failed", code=code, error=str(e))
            return False
