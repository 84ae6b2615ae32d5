"""Processing-fee estimation per payment method.

Display-only: the preview shown to donors and the charge computed at session
creation both come from estimate_fee, so they cannot drift apart. The rate
table is configuration (settings.FEE_SCHEDULE); confirm real rates with the
providers before going live.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from donations_api.core.config import settings
from donations_api.core.exceptions import ValidationError

CENT = Decimal("0.01")

_METHOD_LABELS = {
    "stripe": "Stripe",
    "paypal": "PayPal",
    "apple_pay": "Apple Pay",
    "google_pay": "Google Pay",
    "pakistan_gateway": "Bank transfer",
}


@dataclass(frozen=True)
class FeeEstimate:
    processing_fee: Decimal
    total_with_fees: Decimal
    donation_amount: Decimal
    fee_description: str


def round_money(value: Decimal) -> Decimal:
    """Round to cents, half-up."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _describe(method: str, currency: str, percent: Decimal, fixed: Decimal, domestic: bool) -> str:
    label = _METHOD_LABELS.get(method, method)
    if percent == 0 and fixed == 0:
        return f"{label} payments have no processing fee"
    pct = f"{(percent * 100).normalize():f}%"
    scope = "domestic" if domestic else "international"
    return f"{label} charges {pct} + {currency} {fixed:.2f} per {scope} transaction"


def estimate_fee(
    amount: Decimal | int | str,
    currency: str,
    payment_method: str,
    *,
    cover_fees: bool = True,
    schedule: dict[str, dict[str, tuple[Decimal, Decimal]]] | None = None,
    domestic_currency: str | None = None,
) -> FeeEstimate:
    """Return the fee breakdown for a donation.

    The rate is looked up by (payment_method, currency is domestic). When the
    donor covers fees the total is amount + fee; otherwise the donor pays the
    bare amount and the fee is shown for transparency.
    """
    schedule = schedule if schedule is not None else settings.FEE_SCHEDULE
    domestic_currency = (domestic_currency or settings.DOMESTIC_CURRENCY).upper()

    amount = Decimal(str(amount))
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero")

    rates = schedule.get(payment_method)
    if rates is None:
        raise ValidationError(f"Unsupported payment method '{payment_method}'")

    currency = currency.upper()
    domestic = currency == domestic_currency
    percent, fixed = rates["domestic" if domestic else "international"]
    percent, fixed = Decimal(percent), Decimal(fixed)

    processing_fee = round_money(amount * percent + fixed)
    donation_amount = round_money(amount)
    total = donation_amount + processing_fee if cover_fees else donation_amount

    return FeeEstimate(
        processing_fee=processing_fee,
        total_with_fees=total,
        donation_amount=donation_amount,
        fee_description=_describe(payment_method, currency, percent, fixed, domestic),
    )
