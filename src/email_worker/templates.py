"""Static email copy for cart reminders."""

from dataclasses import dataclass
from html import escape
from typing import Any


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


SUBJECTS = {
    "cart_reminder": "You left something in your cart",
    "cart_reminder_final": "Your cart is about to expire",
}


def _item_lines(payload: dict[str, Any]) -> list[str]:
    currency = payload.get("currency", "")
    return [
        f"{item['quantity']} x {item['product_ref']}"
        + (f" ({item['variant_ref']})" if item.get("variant_ref") else "")
        + f" - {item['subtotal']} {currency}"
        for item in payload.get("cart_items", [])
    ]


def render(template_kind: str, payload: dict[str, Any]) -> RenderedEmail:
    """Render a reminder. Unknown template kinds raise KeyError."""
    subject = SUBJECTS[template_kind]
    first_name = payload.get("first_name") or "Valued Customer"
    lines = _item_lines(payload)
    total = f"{payload.get('total_amount', '0.00')} {payload.get('currency', '')}".strip()

    text_parts = [
        f"Hi {first_name},",
        "",
        "You still have these items waiting in your cart:",
        *lines,
        "",
        f"Total: {total}",
    ]
    if payload.get("discount_code"):
        text_parts += ["", f"Use code {payload['discount_code']} at checkout."]
    text_parts += [
        "",
        f"Pick up where you left off: {payload['recovery_url']}",
        "",
        f"Unsubscribe: {payload.get('unsubscribe_url', '')}",
    ]

    items_html = "".join(f"<li>{escape(line)}</li>" for line in lines)
    discount_html = (
        f"<p>Use code <strong>{escape(payload['discount_code'])}</strong> at checkout.</p>"
        if payload.get("discount_code")
        else ""
    )
    html = (
        f"<p>Hi {escape(first_name)},</p>"
        f"<p>You still have these items waiting in your cart:</p>"
        f"<ul>{items_html}</ul>"
        f"<p>Total: {escape(total)}</p>"
        f"{discount_html}"
        f'<p><a href="{escape(payload["recovery_url"])}">Return to your cart</a></p>'
        f'<p><a href="{escape(payload.get("unsubscribe_url", ""))}">Unsubscribe</a></p>'
    )

    return RenderedEmail(subject=subject, html=html, text="\n".join(text_parts))
