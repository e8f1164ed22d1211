"""
Money Utilities — INR amounts are stored as integer paise.
"""
from decimal import Decimal, ROUND_HALF_UP

PAISE_PER_RUPEE = 100

_ONES = [
    "", "One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight", "Nine",
    "Ten", "Eleven", "Twelve", "Thirteen", "Fourteen", "Fifteen", "Sixteen",
    "Seventeen", "Eighteen", "Nineteen",
]
_TENS = ["", "", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety"]


def to_paise(rupees) -> int:
    """Convert a rupee amount (Decimal, int or numeric string) to integer paise.

    Raises:
        ValueError: if the amount has more than two decimal places.
    """
    value = Decimal(str(rupees))
    paise = value * PAISE_PER_RUPEE
    if paise != paise.to_integral_value():
        raise ValueError(f"Amount {rupees} has sub-paisa precision")
    return int(paise)


def to_rupees(paise: int) -> Decimal:
    """Integer paise -> Decimal rupees with two places."""
    return (Decimal(paise) / PAISE_PER_RUPEE).quantize(Decimal("0.01"))


def round_half_up_rupees(paise) -> int:
    """Round a paise amount (int or Decimal) to the nearest whole rupee, half-up.

    Returns the rounded amount in paise.
    """
    rupees = (Decimal(paise) / PAISE_PER_RUPEE).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(rupees) * PAISE_PER_RUPEE


def _group_indian(digits: str) -> str:
    """1234567 -> 12,34,567 (last three, then pairs)."""
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    pairs = []
    while len(head) > 2:
        pairs.insert(0, head[-2:])
        head = head[:-2]
    if head:
        pairs.insert(0, head)
    return ",".join(pairs + [tail])


def format_inr(paise: int, symbol: str = "₹") -> str:
    """Format paise as Indian currency, e.g. 10000000 -> '₹1,00,000.00'."""
    sign = "-" if paise < 0 else ""
    rupees, fraction = divmod(abs(int(paise)), PAISE_PER_RUPEE)
    return f"{sign}{symbol}{_group_indian(str(rupees))}.{fraction:02d}"


def _below_thousand(n: int) -> str:
    if n < 20:
        return _ONES[n]
    if n < 100:
        return _TENS[n // 10] + (" " + _ONES[n % 10] if n % 10 else "")
    rest = n % 100
    return _ONES[n // 100] + " Hundred" + (" " + _below_thousand(rest) if rest else "")


def _number_to_words(n: int) -> str:
    """Indian numbering: crore, lakh, thousand."""
    if n == 0:
        return "Zero"
    parts = []
    for divisor, label in ((10_000_000, "Crore"), (100_000, "Lakh"), (1_000, "Thousand")):
        if n >= divisor:
            parts.append(f"{_number_to_words(n // divisor)} {label}")
            n %= divisor
    if n:
        parts.append(_below_thousand(n))
    return " ".join(parts)


def amount_in_words(paise: int) -> str:
    """Receipt wording, e.g. 100050 -> 'Rupees One Thousand and Fifty Paise Only'."""
    rupees, fraction = divmod(abs(int(paise)), PAISE_PER_RUPEE)
    words = f"Rupees {_number_to_words(rupees)}"
    if fraction:
        words += f" and {_number_to_words(fraction)} Paise"
    return words + " Only"
