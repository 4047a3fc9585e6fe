"""
Normalized transaction record.

Every parser, whatever the bank's export format, produces this shape.
Amounts are integer YNAB milliunits (1/1000 of the currency unit); the
engine never sees floating point money.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

MILLIUNITS_PER_UNIT = 1000

THOUSANDS_PATTERN = re.compile(r"^[+-]?\d{1,3}(,\d{3})+(\.\d+)?$")


def to_milliunits(value: Decimal | str | int) -> int:
    """
    Convert a currency amount to YNAB milliunits.

    Args:
        value: Amount in currency units. Strings may use "," as a
            thousands separator ("1,234.50"); any other comma, such as
            a decimal comma ("-7,88"), is rejected.

    Returns:
        Signed integer amount in milliunits

    Raises:
        ValueError: If the value is a float or not a parseable amount
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError(f"amount must be Decimal, str, or int, got: {type(value).__name__}")

    if isinstance(value, str):
        cleaned = value.strip()
        if "," in cleaned:
            # A comma is only a thousands separator; "-7,88" is rejected
            if not THOUSANDS_PATTERN.match(cleaned):
                raise ValueError(f"Not a valid amount: {value!r}")
            cleaned = cleaned.replace(",", "")
        try:
            value = Decimal(cleaned)
        except InvalidOperation as e:
            raise ValueError(f"Not a valid amount: {value!r}") from e
    elif isinstance(value, int):
        value = Decimal(value)
    elif not isinstance(value, Decimal):
        raise ValueError(f"amount must be Decimal, str, or int, got: {type(value).__name__}")

    if not value.is_finite():
        raise ValueError(f"Not a valid amount: {value!r}")

    milli = (value * MILLIUNITS_PER_UNIT).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(milli)


def format_milliunits(amount: int) -> str:
    """Render milliunits as a human readable currency amount (e.g. -1.500)."""
    sign = "-" if amount < 0 else ""
    units, milli = divmod(abs(amount), MILLIUNITS_PER_UNIT)
    return f"{sign}{units}.{milli:03d}"


@dataclass(frozen=True)
class NormalizedTransaction:
    """A single bank transaction, normalized.

    Identity is (account_id, amount, date_posted). Payee and memo are
    advisory only: successive exports of the same transaction often carry
    different descriptions.
    """

    account_id: int
    amount: int  # milliunits
    date_posted: date
    payee: str | None = None
    memo: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise ValueError(
                f"amount must be an int in milliunits, got: {type(self.amount).__name__}"
            )
        # datetime is a subclass of date; a time component is not allowed
        if isinstance(self.date_posted, datetime) or not isinstance(self.date_posted, date):
            raise ValueError(
                f"date_posted must be a date, got: {type(self.date_posted).__name__}"
            )
        if isinstance(self.account_id, bool) or not isinstance(self.account_id, int):
            raise ValueError(f"account_id must be an int, got: {type(self.account_id).__name__}")

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "amount": self.amount,
            "date_posted": self.date_posted.isoformat(),
            "payee": self.payee,
            "memo": self.memo,
        }
