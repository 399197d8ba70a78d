from decimal import Decimal

CENT = Decimal("0.01")


def to_major_units(amount: int | str | None) -> Decimal:
    """Convert an integer minor-unit amount (cents) to a decimal major-unit amount."""
    if amount is None or amount == "":
        return Decimal("0.00")
    return (Decimal(int(amount)) / 100).quantize(CENT)
