from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Union

from booking_errors import BookingError
from booking_schemas import Coupon, Settings, TaxBreakup

_CENT = Decimal("0.01")


def _dec(value) -> Decimal:
    # go through str() so 1.005 rounds the way it reads
    return Decimal(str(value or 0))


def round2(value) -> float:
    return float(_dec(value).quantize(_CENT, rounding=ROUND_HALF_UP))


def round_half_up(value) -> int:
    return int(_dec(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_paise(value) -> int:
    return int((_dec(value) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_gst(taxable_value, rate, interstate: bool = False) -> TaxBreakup:
    """
    GST on a taxable amount.
    Intra-state tax is split into CGST (floor half, in paise) and SGST (the rest),
    so cgst + sgst always equals gst_amount.
    """
    taxable = max(0.0, round2(taxable_value))
    rate = min(1.0, max(0.0, float(rate or 0)))
    gst_paise = to_paise(_dec(taxable) * _dec(rate))

    if interstate:
        cgst_paise, sgst_paise, igst_paise = 0, 0, gst_paise
    else:
        cgst_paise = gst_paise // 2
        sgst_paise = gst_paise - cgst_paise
        igst_paise = 0

    return TaxBreakup(
        gst_rate=rate,
        taxable_value=taxable,
        gst_amount=gst_paise / 100,
        cgst=cgst_paise / 100,
        sgst=sgst_paise / 100,
        igst=igst_paise / 100,
    )


def hotel_gst_rate(per_night_price, settings: Settings) -> float:
    price = float(per_night_price or 0)
    for slab in settings.tax_rules.hotel.slabs:
        if price < slab.min_price:
            continue
        if slab.max_price is None or price <= slab.max_price:
            return slab.gst
    return 0.0


def _as_utc_date(value: Union[str, date, datetime]) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if len(text) == 10:
        return date.fromisoformat(text)
    parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date()


def nights_between(check_in, check_out) -> int:
    """Whole UTC days from check-in to check-out. Can be zero or negative."""
    return (_as_utc_date(check_out) - _as_utc_date(check_in)).days


def parse_day(value) -> Optional[date]:
    try:
        return _as_utc_date(value)
    except (TypeError, ValueError):
        return None


def tier_multiplier(settings: Settings, tier: Optional[str]) -> float:
    if not tier:
        return 1.0
    for t in settings.pricing_tiers:
        if t.name.lower() == str(tier).lower():
            return t.multiplier
    return 1.0


def coupon_discount(coupons: Iterable[Coupon], code: Optional[str], category: str,
                    subtotal: float, today: Optional[date] = None) -> float:
    """
    Discount for a coupon code against a subtotal.
    Returns 0 when no code is given; raises COUPON_INVALID otherwise if it does not apply.
    """
    if not code:
        return 0.0
    today = today or datetime.now(timezone.utc).date()
    wanted = str(code).strip().upper()

    coupon = next((c for c in coupons if c.code.strip().upper() == wanted), None)
    if coupon is None:
        raise BookingError("COUPON_INVALID", "Unknown coupon code")
    if coupon.category not in ("all", category):
        raise BookingError("COUPON_INVALID", f"Coupon not valid for {category}")
    expiry = parse_day(coupon.expiry) if coupon.expiry else None
    if expiry is not None and expiry < today:
        raise BookingError("COUPON_INVALID", "Coupon expired")
    if subtotal < coupon.min_cart:
        raise BookingError("COUPON_INVALID", f"Minimum cart value is {coupon.min_cart}")

    if coupon.type == "percent":
        discount = subtotal * min(100.0, coupon.amount) / 100
    else:
        discount = coupon.amount
    return round2(min(subtotal, discount))
