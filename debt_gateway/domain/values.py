"""Validated value types: token amounts, interest rates, durations and addresses"""

from dataclasses import dataclass, field
from decimal import Context, Decimal, Inexact, InvalidOperation, localcontext
from enum import Enum
from typing import Union

from eth_utils import is_checksum_address, is_checksum_formatted_address, is_hex_address, to_checksum_address

from debt_gateway.domain.exceptions import (
    InvalidAddressError,
    InvalidAmountError,
    InvalidDurationError,
    InvalidInterestRateError,
)
from debt_gateway.utils.date_utils import add_calendar_interval

Numeric = Union[int, str, Decimal]

MAX_INTEREST_RATE_PRECISION = 4
FIXED_POINT_SCALING_FACTOR = 10**MAX_INTEREST_RATE_PRECISION

# Wide enough for any uint256; scaling that would still round is an error
EXACT_CONTEXT = Context(prec=100, traps=[Inexact, InvalidOperation])


def _to_decimal(value: Numeric, error: type) -> Decimal:
    if isinstance(value, float):
        # floats carry binary noise; callers pass str or Decimal
        value = str(value)
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise error(f"Not a number: {value!r}") from e
    if not result.is_finite():
        raise error(f"Not a finite number: {value!r}")
    return result


@dataclass(frozen=True)
class TokenAmount:
    """
    Amount of a token in both human (decimal) and ledger (raw integer) units.

    Invariant: raw_amount == decimal_amount * 10**decimals exactly.
    """

    raw_amount: int
    decimals: int
    token_symbol: str

    def __post_init__(self):
        if self.decimals < 0:
            raise InvalidAmountError(f"Token decimals must be non-negative, got {self.decimals}")
        if self.raw_amount < 0:
            raise InvalidAmountError(f"Token amounts cannot be negative, got {self.raw_amount}")

    @classmethod
    def from_decimal(cls, amount: Numeric, token_symbol: str, decimals: int = 18) -> "TokenAmount":
        value = _to_decimal(amount, InvalidAmountError)
        if value < 0:
            raise InvalidAmountError(f"Token amounts cannot be negative, got {value}")
        with localcontext(EXACT_CONTEXT):
            try:
                raw = value.scaleb(decimals)
            except Inexact as e:
                raise InvalidAmountError(f"{value} {token_symbol} is too large to represent exactly") from e
        if raw != raw.to_integral_value():
            raise InvalidAmountError(
                f"{value} {token_symbol} has more than {decimals} decimal places"
            )
        return cls(raw_amount=int(raw), decimals=decimals, token_symbol=token_symbol)

    @classmethod
    def from_raw(cls, raw_amount: int, token_symbol: str, decimals: int = 18) -> "TokenAmount":
        return cls(raw_amount=int(raw_amount), decimals=decimals, token_symbol=token_symbol)

    @property
    def decimal_amount(self) -> Decimal:
        return Decimal(self.raw_amount).scaleb(-self.decimals, context=EXACT_CONTEXT)

    def __str__(self) -> str:
        return f"{self.decimal_amount.normalize():f} {self.token_symbol}"


@dataclass(frozen=True)
class InterestRate:
    """Percentage rate stored as a fixed-point integer (percent * 10^4)"""

    raw: int

    def __post_init__(self):
        if self.raw < 0:
            raise InvalidInterestRateError(f"Interest rate cannot be negative, got raw {self.raw}")

    @classmethod
    def from_percent(cls, percent: Numeric) -> "InterestRate":
        value = _to_decimal(percent, InvalidInterestRateError)
        scaled = value * FIXED_POINT_SCALING_FACTOR
        if scaled != scaled.to_integral_value():
            raise InvalidInterestRateError(
                f"Interest rate {value} exceeds {MAX_INTEREST_RATE_PRECISION} decimal places"
            )
        return cls(raw=int(scaled))

    @property
    def percent(self) -> Decimal:
        return Decimal(self.raw) / FIXED_POINT_SCALING_FACTOR


class DurationUnit(str, Enum):
    HOUR = "hour"
    DAY = "day"
    MONTH = "month"
    YEAR = "year"

    @classmethod
    def parse(cls, value: Union[str, "DurationUnit"]) -> "DurationUnit":
        """Accept singular or plural forms ("day", "days")"""
        if isinstance(value, DurationUnit):
            return value
        normalized = str(value).strip().lower()
        if normalized.endswith("s"):
            normalized = normalized[:-1]
        try:
            return cls(normalized)
        except ValueError as e:
            raise InvalidDurationError(f"Unknown duration unit: {value!r}") from e


@dataclass(frozen=True)
class TimeInterval:
    """Positive whole number of hours, days, months or years"""

    amount: int
    unit: DurationUnit

    def __post_init__(self):
        object.__setattr__(self, "unit", DurationUnit.parse(self.unit))
        if isinstance(self.amount, bool) or not isinstance(self.amount, int) or self.amount <= 0:
            raise InvalidDurationError(f"Duration must be a positive integer, got {self.amount!r}")

    def from_timestamp(self, timestamp: int) -> int:
        """Absolute UNIX timestamp this interval after `timestamp`"""
        return add_calendar_interval(timestamp, self.amount, self.unit.value)


@dataclass(frozen=True)
class EthereumAddress:
    """20-byte account identifier, stored in checksum case"""

    value: str = field()

    def __post_init__(self):
        raw = self.value
        if not isinstance(raw, str) or not is_hex_address(raw):
            raise InvalidAddressError(f"Not a 20-byte hex address: {raw!r}")
        if is_checksum_formatted_address(raw) and not is_checksum_address(raw):
            raise InvalidAddressError(f"Address fails checksum: {raw}")
        object.__setattr__(self, "value", to_checksum_address(raw))

    def __str__(self) -> str:
        return self.value


NULL_ADDRESS = EthereumAddress("0x0000000000000000000000000000000000000000")
