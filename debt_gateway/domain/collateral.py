"""Collateral sufficiency: loan-to-value checks over signed prices"""

from decimal import ROUND_CEILING, Context, Decimal, localcontext
from typing import Optional, Tuple, Union

from debt_gateway.domain.exceptions import (
    CollateralAmountNotSetError,
    InsufficientCollateralError,
    InvalidAmountError,
    PricesNotSetError,
)
from debt_gateway.domain.models import SignedPrice
from debt_gateway.domain.values import TokenAmount

# Products of uint256-sized amounts and 18-decimal prices stay exact
LTV_CONTEXT = Context(prec=200)


def _percent(max_ltv: Union[int, str, Decimal]) -> Decimal:
    return Decimal(str(max_ltv))


def _check_preconditions(
    collateral_amount: Optional[Decimal],
    principal_price: Optional[SignedPrice],
    collateral_price: Optional[SignedPrice],
) -> None:
    if principal_price is None or collateral_price is None:
        raise PricesNotSetError()
    if collateral_amount is None or collateral_amount == 0:
        raise CollateralAmountNotSetError()
    if collateral_amount < 0:
        raise InvalidAmountError(f"Collateral amount cannot be negative, got {collateral_amount}")


def _values(
    principal: TokenAmount,
    collateral_amount: Decimal,
    principal_price: SignedPrice,
    collateral_price: SignedPrice,
) -> Tuple[Decimal, Decimal]:
    with localcontext(LTV_CONTEXT):
        principal_value = principal.decimal_amount * principal_price.token_price
        collateral_value = Decimal(collateral_amount) * collateral_price.token_price
    return principal_value, collateral_value


def _within_limit(principal_value: Decimal, collateral_value: Decimal, max_ltv) -> bool:
    if collateral_value == 0:
        return False
    # principal / collateral <= max_ltv / 100, without a rounded division
    with localcontext(LTV_CONTEXT):
        return principal_value * 100 <= _percent(max_ltv) * collateral_value


def loan_to_value(
    principal: TokenAmount,
    collateral_amount: Optional[Decimal],
    principal_price: Optional[SignedPrice],
    collateral_price: Optional[SignedPrice],
) -> Optional[Decimal]:
    """
    Ratio of principal value to collateral value, or None when the collateral is
    worthless.

    Uses human-denomination amounts: raw ledger integers of tokens with
    different decimals are not comparable.
    """
    _check_preconditions(collateral_amount, principal_price, collateral_price)

    principal_value, collateral_value = _values(
        principal, collateral_amount, principal_price, collateral_price
    )
    if collateral_value == 0:
        return None
    with localcontext(LTV_CONTEXT):
        return principal_value / collateral_value


def is_sufficient(
    principal: TokenAmount,
    collateral_amount: Optional[Decimal],
    principal_price: Optional[SignedPrice],
    collateral_price: Optional[SignedPrice],
    max_ltv: Decimal,
) -> bool:
    """True iff principal_value / collateral_value <= max_ltv / 100"""
    _check_preconditions(collateral_amount, principal_price, collateral_price)

    principal_value, collateral_value = _values(
        principal, collateral_amount, principal_price, collateral_price
    )
    return _within_limit(principal_value, collateral_value, max_ltv)


def assert_sufficient(
    principal: TokenAmount,
    collateral_amount: Optional[Decimal],
    collateral_symbol: str,
    principal_price: Optional[SignedPrice],
    collateral_price: Optional[SignedPrice],
    max_ltv: Decimal,
) -> Decimal:
    """Return the LTV ratio, raising InsufficientCollateralError when it exceeds max_ltv"""
    ratio = loan_to_value(principal, collateral_amount, principal_price, collateral_price)
    principal_value, collateral_value = _values(
        principal, collateral_amount, principal_price, collateral_price
    )
    if not _within_limit(principal_value, collateral_value, max_ltv):
        raise InsufficientCollateralError(
            collateral_amount, collateral_symbol, ratio, _percent(max_ltv)
        )
    return ratio


def required_collateral(
    principal: TokenAmount,
    principal_price: Optional[SignedPrice],
    collateral_price: Optional[SignedPrice],
    ltv: Decimal,
    collateral_symbol: str,
    collateral_decimals: int,
) -> Decimal:
    """Smallest collateral amount at the token's precision that meets `ltv`"""
    ltv = _percent(ltv)
    if principal_price is None or collateral_price is None:
        raise PricesNotSetError()
    if collateral_price.token_price == 0 or ltv <= 0:
        raise InsufficientCollateralError(Decimal(0), collateral_symbol, None, ltv)

    with localcontext(LTV_CONTEXT):
        principal_value = principal.decimal_amount * principal_price.token_price
        amount = principal_value * 100 / ltv / collateral_price.token_price
        return amount.quantize(Decimal(1).scaleb(-collateral_decimals), rounding=ROUND_CEILING)
