"""
Term translators: pack loan terms into the 32-byte terms-contract parameter word.

Layout (most significant bits first):

    simple interest (148 bits)
        principal token index      8
        principal amount          96
        interest rate (raw)       24
        amortization unit          4
        term length               16
    collateral (108 bits, collateralized terms contract only)
        collateral token index     8
        collateral amount         92
        grace period in days       8

The layout is part of the interchange contract; other implementations must
produce the same word for the same terms.
"""

from dataclasses import dataclass
from typing import List, Tuple

from debt_gateway.domain.exceptions import InvalidDurationError, TermsParameterOverflowError
from debt_gateway.domain.models import OrderTerms
from debt_gateway.domain.ports import TokenRegistry
from debt_gateway.domain.values import DurationUnit

# Code 2 is reserved for weekly amortization, which this gateway does not issue
AMORTIZATION_UNIT_CODES = {
    DurationUnit.HOUR: 0,
    DurationUnit.DAY: 1,
    DurationUnit.MONTH: 3,
    DurationUnit.YEAR: 4,
}
AMORTIZATION_UNITS_BY_CODE = {code: unit for unit, code in AMORTIZATION_UNIT_CODES.items()}

SIMPLE_INTEREST_FIELDS: List[Tuple[str, int]] = [
    ("principal_token_index", 8),
    ("principal_amount", 96),
    ("interest_rate", 24),
    ("amortization_unit", 4),
    ("term_length", 16),
]
COLLATERAL_FIELDS: List[Tuple[str, int]] = [
    ("collateral_token_index", 8),
    ("collateral_amount", 92),
    ("grace_period_in_days", 8),
]
COLLATERAL_BITS = sum(width for _, width in COLLATERAL_FIELDS)


@dataclass(frozen=True)
class SimpleInterestLoanTerms:
    principal_token_index: int
    principal_amount: int
    interest_rate: int
    amortization_unit: DurationUnit
    term_length: int


@dataclass(frozen=True)
class CollateralizedLoanTerms:
    principal_token_index: int
    principal_amount: int
    interest_rate: int
    amortization_unit: DurationUnit
    term_length: int
    collateral_token_index: int
    collateral_amount: int
    grace_period_in_days: int


def _pack(values: dict, layout: List[Tuple[str, int]]) -> int:
    word = 0
    for name, width in layout:
        value = values[name]
        if value < 0 or value >= 1 << width:
            raise TermsParameterOverflowError(f"{name}={value} does not fit in {width} bits")
        word = (word << width) | value
    return word


def _unpack(word: int, layout: List[Tuple[str, int]]) -> dict:
    values = {}
    for name, width in reversed(layout):
        values[name] = word & ((1 << width) - 1)
        word >>= width
    return values


def _unit_code(unit: DurationUnit) -> int:
    return AMORTIZATION_UNIT_CODES[unit]


def _unit_from_code(code: int) -> DurationUnit:
    try:
        return AMORTIZATION_UNITS_BY_CODE[code]
    except KeyError as e:
        raise InvalidDurationError(f"Unknown amortization unit code {code}") from e


def _to_word(params: bytes) -> int:
    if len(params) != 32:
        raise TermsParameterOverflowError(f"Terms parameters must be 32 bytes, got {len(params)}")
    return int.from_bytes(params, "big")


class SimpleInterestTermsTranslator:
    """Uncollateralized simple-interest layout; collateral bits must be zero"""

    def untranslate(self, terms: SimpleInterestLoanTerms) -> bytes:
        values = {
            "principal_token_index": terms.principal_token_index,
            "principal_amount": terms.principal_amount,
            "interest_rate": terms.interest_rate,
            "amortization_unit": _unit_code(terms.amortization_unit),
            "term_length": terms.term_length,
        }
        word = _pack(values, SIMPLE_INTEREST_FIELDS) << COLLATERAL_BITS
        return word.to_bytes(32, "big")

    def translate(self, params: bytes) -> SimpleInterestLoanTerms:
        word = _to_word(params)
        if word & ((1 << COLLATERAL_BITS) - 1):
            raise TermsParameterOverflowError("Simple interest parameters carry collateral bits")
        values = _unpack(word >> COLLATERAL_BITS, SIMPLE_INTEREST_FIELDS)
        values["amortization_unit"] = _unit_from_code(values["amortization_unit"])
        return SimpleInterestLoanTerms(**values)

    def parameters_for(self, terms: OrderTerms, registry: TokenRegistry) -> bytes:
        return self.untranslate(
            SimpleInterestLoanTerms(
                principal_token_index=registry.get_token(terms.principal.token_symbol).index,
                principal_amount=terms.principal.raw_amount,
                interest_rate=terms.interest_rate.raw,
                amortization_unit=terms.term_length.unit,
                term_length=terms.term_length.amount,
            )
        )


class CollateralizedSimpleInterestTermsTranslator:
    """Simple-interest layout followed by collateral token, amount and grace period"""

    def untranslate(self, terms: CollateralizedLoanTerms) -> bytes:
        values = {
            "principal_token_index": terms.principal_token_index,
            "principal_amount": terms.principal_amount,
            "interest_rate": terms.interest_rate,
            "amortization_unit": _unit_code(terms.amortization_unit),
            "term_length": terms.term_length,
            "collateral_token_index": terms.collateral_token_index,
            "collateral_amount": terms.collateral_amount,
            "grace_period_in_days": terms.grace_period_in_days,
        }
        word = _pack(values, SIMPLE_INTEREST_FIELDS + COLLATERAL_FIELDS)
        return word.to_bytes(32, "big")

    def translate(self, params: bytes) -> CollateralizedLoanTerms:
        values = _unpack(_to_word(params), SIMPLE_INTEREST_FIELDS + COLLATERAL_FIELDS)
        values["amortization_unit"] = _unit_from_code(values["amortization_unit"])
        return CollateralizedLoanTerms(**values)

    def loan_terms_for(self, terms: OrderTerms, registry: TokenRegistry) -> CollateralizedLoanTerms:
        """Project generic order terms onto this layout"""
        return CollateralizedLoanTerms(
            principal_token_index=registry.get_token(terms.principal.token_symbol).index,
            principal_amount=terms.principal.raw_amount,
            interest_rate=terms.interest_rate.raw,
            amortization_unit=terms.term_length.unit,
            term_length=terms.term_length.amount,
            collateral_token_index=registry.get_token(terms.collateral.token_symbol).index,
            collateral_amount=terms.collateral.raw_amount,
            grace_period_in_days=terms.grace_period_in_days,
        )

    def parameters_for(self, terms: OrderTerms, registry: TokenRegistry) -> bytes:
        return self.untranslate(self.loan_terms_for(terms, registry))
