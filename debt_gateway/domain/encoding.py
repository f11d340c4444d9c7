"""
Term encoder: canonical, fixed-width serialization of order terms into keccak-256
commitment hashes.

Field order is part of the wire contract. Every numeric field is a uint256 and
every address is 20 bytes, so no encoding is ambiguous.
"""

from decimal import Decimal, Inexact
from typing import Any, Dict, List, Optional, Tuple

from eth_abi.packed import encode_packed
from eth_utils import keccak

from debt_gateway.domain.exceptions import InvalidAmountError, MissingFieldError
from debt_gateway.domain.models import OfferTerms, OrderRecord, OrderTerms, Role
from debt_gateway.domain.translators import AMORTIZATION_UNIT_CODES
from debt_gateway.domain.values import EXACT_CONTEXT, NULL_ADDRESS, EthereumAddress, TokenAmount

Field = Tuple[str, Any]


def _raw(amount: Optional[TokenAmount]) -> int:
    return amount.raw_amount if amount is not None else 0


def _address(address: Optional[EthereumAddress]) -> str:
    return (address or NULL_ADDRESS).value


def _ltv_raw(ltv: Decimal) -> int:
    """LTV percent in the interest-rate fixed-point scale"""
    scaled = ltv * 10_000
    if scaled != scaled.to_integral_value() or scaled < 0:
        raise InvalidAmountError(f"LTV {ltv} is not representable at 4 decimal places")
    return int(scaled)


def solidity_sha3(fields: List[Field]) -> bytes:
    types = [type_ for type_, _ in fields]
    values = [value for _, value in fields]
    return keccak(encode_packed(types, values))


def encode_terms(terms: OrderTerms, offer: Optional[OfferTerms] = None) -> List[Field]:
    """
    Ordered field list for the inner commitment.

    Offers commit to the LTV instead of a collateral amount, which the debtor
    chooses later.
    """
    fields: List[Field] = [
        ("address", terms.kernel_version.value),
        ("address", terms.issuance_version.value),
        ("address", terms.terms_contract.value),
        ("uint256", terms.principal.raw_amount),
        ("address", terms.principal_token.value),
    ]
    if offer is None:
        fields.append(("uint256", terms.collateral.raw_amount))
    fields.append(("address", terms.collateral_token.value))
    if offer is not None:
        fields.append(("uint256", _ltv_raw(offer.ltv)))
    fields += [
        ("uint256", terms.interest_rate.raw),
        ("uint256", terms.term_length.amount),
        ("uint256", AMORTIZATION_UNIT_CODES[terms.term_length.unit]),
        ("uint256", _raw(terms.debtor_fee)),
        ("uint256", _raw(terms.creditor_fee)),
        ("address", _address(terms.relayer)),
        ("uint256", _raw(terms.relayer_fee)),
        ("uint256", terms.expires_at),
        ("uint256", terms.salt),
    ]
    return fields


def compute_commitment_hash(terms: OrderTerms, offer: Optional[OfferTerms] = None) -> bytes:
    """Inner hash over the economic terms"""
    return solidity_sha3(encode_terms(terms, offer))


def compute_creditor_commitment_hash(
    terms: OrderTerms, offer: OfferTerms, decision_engine: EthereumAddress
) -> bytes:
    """Outer hash scoping the inner terms hash to one decision engine"""
    return solidity_sha3(
        [
            ("address", decision_engine.value),
            ("bytes32", compute_commitment_hash(terms, offer)),
        ]
    )


def compute_issuance_hash(
    terms: OrderTerms,
    debtor: Optional[EthereumAddress],
    underwriter: Optional[EthereumAddress] = None,
) -> bytes:
    """Agreement id: binds the debtor to the terms-contract parameters"""
    if debtor is None:
        raise MissingFieldError("debtor")
    return solidity_sha3(
        [
            ("address", terms.issuance_version.value),
            ("address", debtor.value),
            ("address", _address(underwriter)),
            ("uint256", terms.underwriter_risk_rating),
            ("address", terms.terms_contract.value),
            ("bytes32", terms.terms_contract_parameters),
            ("uint256", terms.salt),
        ]
    )


def compute_debt_order_hash(
    terms: OrderTerms,
    debtor: Optional[EthereumAddress],
    underwriter: Optional[EthereumAddress] = None,
) -> bytes:
    """Hash signed by debtor and creditor of a plain debt order"""
    return solidity_sha3(
        [
            ("address", terms.kernel_version.value),
            ("bytes32", compute_issuance_hash(terms, debtor, underwriter)),
            ("uint256", _raw(terms.underwriter_fee)),
            ("uint256", terms.principal.raw_amount),
            ("address", terms.principal_token.value),
            ("uint256", _raw(terms.debtor_fee)),
            ("uint256", _raw(terms.creditor_fee)),
            ("address", _address(terms.relayer)),
            ("uint256", _raw(terms.relayer_fee)),
            ("uint256", terms.expires_at),
        ]
    )


def compute_underwriter_hash(
    terms: OrderTerms,
    debtor: Optional[EthereumAddress],
    underwriter: Optional[EthereumAddress] = None,
) -> bytes:
    return solidity_sha3(
        [
            ("address", terms.kernel_version.value),
            ("bytes32", compute_issuance_hash(terms, debtor, underwriter)),
            ("uint256", _raw(terms.underwriter_fee)),
            ("uint256", terms.principal.raw_amount),
            ("address", terms.principal_token.value),
            ("uint256", terms.expires_at),
        ]
    )


def role_hash(
    record: OrderRecord,
    role: Role,
    decision_engine: EthereumAddress,
    parties: Optional[Dict[Role, EthereumAddress]] = None,
) -> bytes:
    """
    Hash the given role signs for this record's variant.

    `parties` overrides the recorded parties so a first-time signature can be
    computed before the signer's address is bound to the record.
    """
    parties = parties if parties is not None else record.parties
    debtor = parties.get(Role.DEBTOR)
    underwriter = parties.get(Role.UNDERWRITER)
    if role is Role.UNDERWRITER:
        return compute_underwriter_hash(record.terms, debtor, underwriter)
    if role is Role.CREDITOR and record.is_offer:
        return compute_creditor_commitment_hash(record.terms, record.offer, decision_engine)
    return compute_debt_order_hash(record.terms, debtor, underwriter)


def price_payload_hash(token_address: EthereumAddress, token_price: Decimal, timestamp: int) -> bytes:
    """Payload a price provider signs; the price is fixed-point with 18 decimals"""
    try:
        scaled = token_price.scaleb(18, context=EXACT_CONTEXT)
    except Inexact:
        scaled = None
    if scaled is None or scaled != scaled.to_integral_value() or scaled < 0:
        raise InvalidAmountError(f"Price {token_price} is not representable at 18 decimals")
    return solidity_sha3(
        [
            ("address", token_address.value),
            ("uint256", int(scaled)),
            ("uint256", timestamp),
        ]
    )
