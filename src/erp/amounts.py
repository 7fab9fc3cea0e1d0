from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

MONEY_PLACES = Decimal("0.01")
QUANTITY_PLACES = Decimal("0.001")
ZERO = Decimal("0.00")
ZERO_QTY = Decimal("0.000")


def _quantize(value, places):
    if isinstance(value, Decimal):
        return value.quantize(places, rounding=ROUND_HALF_UP)
    return Decimal(str(value)).quantize(places, rounding=ROUND_HALF_UP)


def money(value):
    if value is None or value == "":
        return ZERO
    try:
        return _quantize(value, MONEY_PLACES)
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc


def quantity(value):
    if value is None or value == "":
        return ZERO_QTY
    try:
        return _quantize(value, QUANTITY_PLACES)
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid quantity: {value!r}") from exc
