"""
Payment method normalization.

Staff type payment methods in many spellings ("cash", "Credit Card",
"pay at counter"). They are normalized to upper-case codes; a code the
order store does not accept is downgraded to the default method and the
downgrade is reported back to the caller rather than failing the
payment.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from app.core.config import get_settings

logger = logging.getLogger(__name__)

PAYMENT_ALIASES: dict[str, str] = {
    "COUNTER": "COUNTER",
    "PAY AT COUNTER": "COUNTER",
    "CASH AT COUNTER": "COUNTER",
    "CASH": "CASH",
    "CARD": "CARD",
    "CREDIT CARD": "CARD",
    "DEBIT CARD": "CARD",
    "CREDIT": "CARD",
    "DEBIT": "CARD",
    "UPI": "UPI",
    "GPAY": "UPI",
    "PHONEPE": "UPI",
    "PAYTM": "UPI",
    "ONLINE": "ONLINE",
    "WALLET": "WALLET",
}

_SEPARATORS = re.compile(r"[\s_\-]+")


def normalize_payment_method(raw: Optional[str]) -> Optional[str]:
    """
    Upper-case, collapse separators and resolve known aliases.

    >>> normalize_payment_method(" credit-card ")
    'CARD'
    """
    text = _SEPARATORS.sub(" ", str(raw or "")).strip().upper()
    if not text:
        return None
    return PAYMENT_ALIASES.get(text, text.replace(" ", "_"))


@dataclass
class PaymentMethodResolution:
    requested: Optional[str]
    applied: str
    downgraded: bool


def resolve_payment_method(
    raw: Optional[str],
    supported: Optional[list[str]] = None,
    default: Optional[str] = None,
) -> PaymentMethodResolution:
    """Pick the method to store for ``raw``, downgrading unsupported values."""
    settings = get_settings()
    supported = supported or settings.backend_payment_methods_list
    default = default or settings.default_payment_method

    normalized = normalize_payment_method(raw)
    if normalized is None:
        return PaymentMethodResolution(requested=None, applied=default, downgraded=False)
    if normalized in supported:
        return PaymentMethodResolution(requested=normalized, applied=normalized, downgraded=False)

    logger.warning(f"Payment method {normalized!r} not accepted by the order store; using {default}")
    return PaymentMethodResolution(requested=normalized, applied=default, downgraded=True)


@dataclass
class BulkPaymentResult:
    """
    Outcome of marking a set of orders paid.

    Attributes:
        order_ids: Orders now PAID
        requested_method: Normalized method the caller asked for
        applied_method: Method actually stored
        downgraded: True when requested_method was replaced by the default
    """
    order_ids: list[int] = field(default_factory=list)
    requested_method: Optional[str] = None
    applied_method: Optional[str] = None
    downgraded: bool = False

    @property
    def message(self) -> str:
        count = len(self.order_ids)
        base = f"{count} order{'s' if count != 1 else ''} marked paid"
        if self.downgraded:
            return (
                f"{base}. Payment method {self.requested_method} is not supported; "
                f"recorded as {self.applied_method}"
            )
        return base
