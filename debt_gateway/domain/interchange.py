"""
Interchange schema: the persisted and transmitted shape of an order record.

Amounts, rates and salts travel as decimal strings of their raw integer values
so other implementations recompute byte-identical commitment hashes. Prices
negotiated on offers are transient and never part of the document.
"""

import uuid
from decimal import Decimal
from typing import Any, Dict, Optional

from debt_gateway.domain.exceptions import MissingFieldError
from debt_gateway.domain.models import (
    ECDSASignature,
    LedgerState,
    OfferTerms,
    OrderKind,
    OrderRecord,
    OrderTerms,
    Phase,
    Role,
    SignatureEntry,
)
from debt_gateway.domain.values import EthereumAddress, InterestRate, TimeInterval, TokenAmount

SCHEMA_VERSION = 1


def _required(doc: Dict[str, Any], key: str) -> Any:
    value = doc.get(key)
    if value is None:
        raise MissingFieldError(key)
    return value


def _optional_address(value: Optional[str]) -> Optional[EthereumAddress]:
    return EthereumAddress(value) if value else None


def _fee_out(fee: Optional[TokenAmount]) -> Optional[str]:
    return str(fee.raw_amount) if fee is not None else None


def _fee_in(value: Optional[str], principal: TokenAmount) -> Optional[TokenAmount]:
    if value is None:
        return None
    return TokenAmount.from_raw(int(value), principal.token_symbol, principal.decimals)


def _signature_out(entry: Optional[SignatureEntry]) -> Optional[Dict[str, Any]]:
    if entry is None:
        return None
    return {"v": entry.signature.v, "r": entry.signature.r, "s": entry.signature.s}


def to_interchange(record: OrderRecord) -> Dict[str, Any]:
    terms = record.terms
    doc: Dict[str, Any] = {
        "schemaVersion": SCHEMA_VERSION,
        "id": str(record.id),
        "kind": record.kind.value,
        "phase": record.phase.value,
        "ledgerState": record.ledger_state.value,
        "kernelVersion": terms.kernel_version.value,
        "issuanceVersion": terms.issuance_version.value,
        "termsContract": terms.terms_contract.value,
        "termsContractParameters": "0x" + terms.terms_contract_parameters.hex(),
        "principalAmount": str(terms.principal.raw_amount),
        "principalToken": terms.principal_token.value,
        "principalTokenSymbol": terms.principal.token_symbol,
        "principalDecimals": terms.principal.decimals,
        "collateralAmount": str(terms.collateral.raw_amount),
        "collateralToken": terms.collateral_token.value,
        "collateralTokenSymbol": terms.collateral.token_symbol,
        "collateralDecimals": terms.collateral.decimals,
        "collateralSet": record.collateral_set,
        "interestRate": str(terms.interest_rate.raw),
        "termLength": terms.term_length.amount,
        "amortizationUnit": terms.term_length.unit.value,
        "debtorFee": _fee_out(terms.debtor_fee),
        "creditorFee": _fee_out(terms.creditor_fee),
        "relayer": terms.relayer.value if terms.relayer else None,
        "relayerFee": _fee_out(terms.relayer_fee),
        "underwriterFee": _fee_out(terms.underwriter_fee),
        "underwriterRiskRating": terms.underwriter_risk_rating,
        "gracePeriodInDays": terms.grace_period_in_days,
        "expiresAt": terms.expires_at,
        "salt": str(terms.salt),
        "offer": None,
    }
    for role in Role:
        party = record.parties.get(role)
        doc[role.value] = party.value if party else None
        doc[f"{role.value}Signature"] = _signature_out(record.signatures.get(role))
    if record.offer is not None:
        doc["offer"] = {
            "ltv": str(record.offer.ltv),
            "priceProvider": record.offer.price_provider.value,
        }
    return doc


def from_interchange(doc: Dict[str, Any]) -> OrderRecord:
    """Rebuild a record; signatures are restored as-is and re-verified on use"""
    principal = TokenAmount.from_raw(
        int(_required(doc, "principalAmount")),
        _required(doc, "principalTokenSymbol"),
        int(_required(doc, "principalDecimals")),
    )
    collateral = TokenAmount.from_raw(
        int(_required(doc, "collateralAmount")),
        _required(doc, "collateralTokenSymbol"),
        int(_required(doc, "collateralDecimals")),
    )
    terms = OrderTerms(
        kernel_version=EthereumAddress(_required(doc, "kernelVersion")),
        issuance_version=EthereumAddress(_required(doc, "issuanceVersion")),
        terms_contract=EthereumAddress(_required(doc, "termsContract")),
        principal=principal,
        principal_token=EthereumAddress(_required(doc, "principalToken")),
        collateral=collateral,
        collateral_token=EthereumAddress(_required(doc, "collateralToken")),
        interest_rate=InterestRate(int(_required(doc, "interestRate"))),
        term_length=TimeInterval(int(_required(doc, "termLength")), _required(doc, "amortizationUnit")),
        expires_at=int(_required(doc, "expiresAt")),
        salt=int(_required(doc, "salt")),
        terms_contract_parameters=bytes.fromhex(_required(doc, "termsContractParameters")[2:]),
        debtor_fee=_fee_in(doc.get("debtorFee"), principal),
        creditor_fee=_fee_in(doc.get("creditorFee"), principal),
        relayer=_optional_address(doc.get("relayer")),
        relayer_fee=_fee_in(doc.get("relayerFee"), principal),
        underwriter_fee=_fee_in(doc.get("underwriterFee"), principal),
        underwriter_risk_rating=int(doc.get("underwriterRiskRating") or 0),
        grace_period_in_days=int(doc.get("gracePeriodInDays") or 0),
    )

    offer = None
    if doc.get("offer"):
        offer = OfferTerms(
            ltv=Decimal(_required(doc["offer"], "ltv")),
            price_provider=EthereumAddress(_required(doc["offer"], "priceProvider")),
        )

    record = OrderRecord(
        kind=OrderKind(_required(doc, "kind")),
        terms=terms,
        offer=offer,
        collateral_set=bool(doc.get("collateralSet")),
        phase=Phase(doc.get("phase") or Phase.NEGOTIABLE.value),
        ledger_state=LedgerState(doc.get("ledgerState") or LedgerState.UNSUBMITTED.value),
    )
    if doc.get("id"):
        record.id = uuid.UUID(doc["id"])

    for role in Role:
        party = _optional_address(doc.get(role.value))
        if party is not None:
            record.parties[role] = party
        signature = doc.get(f"{role.value}Signature")
        if signature:
            if party is None:
                raise MissingFieldError(role.value)
            record.signatures[role] = SignatureEntry(
                role=role,
                signer_address=party,
                signature=ECDSASignature(
                    v=int(signature["v"]), r=signature["r"], s=signature["s"]
                ),
            )
    return record
