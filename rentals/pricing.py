"""Rental price computation. Pure functions, no database access."""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Mapping, Optional

from .availability import DateInterval
from .errors import InvalidInput
from .models import Vehicle

SERVICE_FEE_RATE = Decimal("0.10")
TAX_RATE = Decimal("0.08")

# per-day add-ons, keyed by option flag
DAILY_ADDONS = {
    "insurance": Decimal("15"),
    "extra_driver": Decimal("10"),
    "child_seat": Decimal("5"),
}
DIFFERENT_DROPOFF_FEE = Decimal("50")

CENT = Decimal("0.01")


def _decimal(amount) -> Decimal:
    return amount if isinstance(amount, Decimal) else Decimal(str(amount))


def _money(amount) -> float:
    return float(_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class PriceBreakdown:
    total_days: int
    base_price: float
    service_fee: float
    additional_fees: float = 0
    location_fee: float = 0
    tax_rate: float = float(TAX_RATE)
    tax_amount: float = 0
    total_price: float = 0

    @property
    def subtotal(self) -> float:
        return _money(sum(_decimal(x) for x in (
            self.base_price, self.service_fee, self.additional_fees, self.location_fee,
        )))


def price_booking(
    vehicle: Vehicle,
    interval: DateInterval,
    options: Optional[Mapping[str, bool]] = None,
) -> PriceBreakdown:
    """Itemised price of renting ``vehicle`` over ``interval``.

    ``options`` maps flag names (``insurance``, ``extra_driver``,
    ``child_seat``, ``different_dropoff``) to booleans; missing flags are off.
    Amounts are computed in ``Decimal`` and rounded half-up to the cent.

    Bookings persist only ``base_price`` (as ``total_price``) and
    ``service_fee``; add-ons, location fee and tax are quote-only.
    """
    if vehicle.price_per_day is None or vehicle.price_per_day < 0:
        raise InvalidInput("Vehicle price per day must not be negative")
    options = options or {}

    days = interval.total_days
    base_price = _decimal(vehicle.price_per_day) * days
    service_fee = _decimal(_money(base_price)) * SERVICE_FEE_RATE

    additional_fees = sum(
        (per_day * days for option, per_day in DAILY_ADDONS.items() if options.get(option)),
        Decimal(0),
    )
    location_fee = DIFFERENT_DROPOFF_FEE if options.get("different_dropoff") else Decimal(0)

    subtotal = sum(
        (_decimal(_money(x)) for x in (base_price, service_fee, additional_fees, location_fee)),
        Decimal(0),
    )
    tax_amount = _decimal(_money(subtotal * TAX_RATE))

    return PriceBreakdown(
        total_days=days,
        base_price=_money(base_price),
        service_fee=_money(service_fee),
        additional_fees=_money(additional_fees),
        location_fee=_money(location_fee),
        tax_rate=float(TAX_RATE),
        tax_amount=_money(tax_amount),
        total_price=_money(subtotal + tax_amount),
    )


def pricing_card(price_per_day: float) -> dict:
    """Headline prices shown on a vehicle page."""
    daily = _decimal(price_per_day)
    return {
        "base": {
            "daily": price_per_day,
            "weekly": _money(daily * Decimal("6.5")),   # 7 days at a discount
            "monthly": _money(daily * 25),              # 30 days at a discount
        },
        "service_fee": _money(daily * SERVICE_FEE_RATE),
        "deposit": _money(daily * 2),
        "taxes": {"rate": float(TAX_RATE), "amount": _money(daily * TAX_RATE)},
    }
