"""
Fee schedule for bounty payments.

The platform keeps ``rate`` of every bounty; the finder receives the rest.
Both the payment intent and the payout are computed here so the two sides
can never drift apart.
"""

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")


class FeeSchedule:
    def __init__(self, rate: Decimal):
        rate = Decimal(str(rate))
        if rate < 0 or rate >= 1:
            raise ValueError(f"Fee rate must be in [0, 1), got {rate}")
        self.rate = rate

    def platform_fee(self, amount: Decimal) -> Decimal:
        return (Decimal(amount) * self.rate).quantize(CENT, rounding=ROUND_HALF_UP)

    def finder_share(self, amount: Decimal) -> Decimal:
        amount = Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)
        return amount - self.platform_fee(amount)


def to_minor_units(amount: Decimal) -> int:
    """Convert a currency amount to integer cents for the processor."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
