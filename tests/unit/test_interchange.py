"""Unit tests for the interchange document"""

import json
from decimal import Decimal

import pytest

from debt_gateway.domain.exceptions import MissingFieldError
from debt_gateway.domain.interchange import from_interchange, to_interchange
from debt_gateway.domain.lifecycle import LoanRequestParams, OfferParams, commitment_hash
from debt_gateway.domain.models import OrderKind, Role
from debt_gateway.domain.values import TimeInterval


@pytest.fixture
async def signed_order(lifecycle, signer, debtor, underwriter):
    params = LoanRequestParams(
        principal_amount=Decimal("250.5"),
        principal_token="USDC",
        collateral_amount=Decimal("1.25"),
        collateral_token="WETH",
        interest_rate=Decimal("7.125"),
        term_length=TimeInterval(1, "year"),
        expires_in=TimeInterval(12, "hours"),
        debtor=debtor,
        underwriter=underwriter,
        creditor_fee=Decimal("0.5"),
        underwriter_fee=Decimal("1"),
        underwriter_risk_rating=3,
    )
    record = await lifecycle.create_loan_request(params, signer)
    await lifecycle.sign_as_underwriter(record, signer)
    return record


async def test_document_uses_raw_integer_strings(signed_order):
    doc = to_interchange(signed_order)

    assert doc["principalAmount"] == "250500000"
    assert doc["principalDecimals"] == 6
    assert doc["collateralAmount"] == str(125 * 10**16)
    assert doc["interestRate"] == "71250"
    assert doc["amortizationUnit"] == "year"
    assert doc["creditorFee"] == "500000"
    assert doc["debtorFee"] is None
    assert doc["salt"] == str(signed_order.terms.salt)
    assert doc["creditorSignature"] is None
    assert set(doc["debtorSignature"]) == {"v", "r", "s"}
    json.dumps(doc)


async def test_round_trip_preserves_hashes_and_signatures(signed_order, lifecycle):
    restored = from_interchange(json.loads(json.dumps(to_interchange(signed_order))))

    assert restored.id == signed_order.id
    assert restored.terms == signed_order.terms
    assert restored.parties == signed_order.parties
    assert commitment_hash(restored) == commitment_hash(signed_order)
    assert lifecycle.is_signed_by(restored, Role.DEBTOR)
    assert lifecycle.is_signed_by(restored, Role.UNDERWRITER)


async def test_offer_round_trip_drops_prices(lifecycle, price_provider, registry, sign_price):
    params = OfferParams(
        principal_amount=Decimal("10"),
        principal_token="REP",
        collateral_token="WETH",
        interest_rate=Decimal("5"),
        term_length=TimeInterval(3, "months"),
        expires_in=TimeInterval(1, "day"),
        ltv=Decimal("45.5"),
        price_provider=price_provider,
    )
    record = await lifecycle.create_offer(params, OrderKind.LTV_OFFER)
    lifecycle.set_principal_price(record, sign_price(registry.get_token("REP"), "2"))

    restored = from_interchange(to_interchange(record))

    assert restored.kind is OrderKind.LTV_OFFER
    assert restored.offer == record.offer
    assert restored.negotiation.principal_price is None
    assert commitment_hash(restored) == commitment_hash(record)


def test_missing_required_field_is_named():
    with pytest.raises(MissingFieldError) as exc_info:
        from_interchange({"kind": "debt_order"})
    assert exc_info.value.field_name == "principalAmount"


async def test_signature_without_party_is_rejected(signed_order):
    doc = to_interchange(signed_order)
    doc["debtor"] = None

    with pytest.raises(MissingFieldError):
        from_interchange(doc)
