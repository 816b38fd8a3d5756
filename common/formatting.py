from decimal import ROUND_HALF_UP, Decimal

MONEY_QUANT = Decimal("0.01")
CURRENCY_SYMBOL = "₹"


def to_money(value):
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def group_indian(digits):
    """Group an integer digit string the Indian way: 12,34,567."""
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups + [tail])


def format_inr(value, symbol=CURRENCY_SYMBOL):
    amount = to_money(value or 0)
    sign = "-" if amount < 0 else ""
    whole, _, fraction = f"{abs(amount):.2f}".partition(".")
    return f"{sign}{symbol} {group_indian(whole)}.{fraction}"
