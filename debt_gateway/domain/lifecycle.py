"""
Order lifecycle: creation, negotiation, signing, fill and cancellation.

States: DRAFT -> DEBTOR_COMMITTED -> OPEN -> FILLED | CANCELLED | EXPIRED.
OPEN and EXPIRED are observed against ledger time, never stored. FILLED and
CANCELLED come only from the ledger oracle.

Variants gate the debtor-signing transition differently:
- DEBT_ORDER: debtor signs the debt order hash directly.
- MAX_LTV_OFFER: creditor signs first; debtor must set prices and a collateral
  amount satisfying the maximum LTV.
- LTV_OFFER: creditor signs first; collateral is derived from the prices at the
  fixed LTV.
"""

import logging
import secrets
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Optional

from debt_gateway.domain import collateral as collateral_checks
from debt_gateway.domain.encoding import (
    compute_commitment_hash,
    compute_debt_order_hash,
    price_payload_hash,
    role_hash,
)
from debt_gateway.domain.exceptions import (
    AlreadySignedError,
    MissingFieldError,
    OrderCommittedError,
    OrderFinalizedError,
    OrderNotFillableError,
    PreconditionError,
    PriceSignatureError,
    PriceTokenMismatchError,
    SignerMismatchError,
    TermsFrozenError,
    ValidationError,
)
from debt_gateway.domain.models import (
    LedgerState,
    OfferTerms,
    OrderKind,
    OrderRecord,
    OrderStatus,
    OrderTerms,
    Phase,
    Role,
    SignatureEntry,
    SignedPrice,
)
from debt_gateway.domain.ports import LedgerOracle, Signer, TokenRegistry
from debt_gateway.domain.signatures import attach_signature, is_signed_by, is_valid_signature
from debt_gateway.domain.translators import (
    CollateralizedSimpleInterestTermsTranslator,
    SimpleInterestTermsTranslator,
)
from debt_gateway.domain.values import EthereumAddress, InterestRate, TimeInterval, TokenAmount

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProtocolConfig:
    kernel_version: EthereumAddress
    issuance_version: EthereumAddress
    simple_interest_terms_contract: EthereumAddress
    collateralized_terms_contract: EthereumAddress
    decision_engine: EthereumAddress
    block_time_estimate_seconds: int = 15
    salt_decimals: int = 20


@dataclass(frozen=True)
class LoanRequestParams:
    principal_amount: Decimal
    principal_token: str
    collateral_amount: Decimal
    collateral_token: str
    interest_rate: Decimal
    term_length: TimeInterval
    expires_in: TimeInterval
    debtor: Optional[EthereumAddress] = None
    underwriter: Optional[EthereumAddress] = None
    debtor_fee: Optional[Decimal] = None
    creditor_fee: Optional[Decimal] = None
    relayer: Optional[EthereumAddress] = None
    relayer_fee: Optional[Decimal] = None
    underwriter_fee: Optional[Decimal] = None
    underwriter_risk_rating: int = 0
    grace_period_in_days: int = 0


@dataclass(frozen=True)
class OfferParams:
    principal_amount: Decimal
    principal_token: str
    collateral_token: str
    interest_rate: Decimal
    term_length: TimeInterval
    expires_in: TimeInterval
    ltv: Decimal
    price_provider: EthereumAddress
    debtor_fee: Optional[Decimal] = None
    creditor_fee: Optional[Decimal] = None
    relayer: Optional[EthereumAddress] = None
    relayer_fee: Optional[Decimal] = None
    grace_period_in_days: int = 0


def generate_salt(decimals: int = 20) -> int:
    """Random nonce below 10**decimals; decorrelates hashes of identical terms"""
    return secrets.randbelow(10**decimals)


def is_expired_at(record: OrderRecord, current_time: int, block_time_estimate: int) -> bool:
    """Expired if the order will have lapsed by the time the next block confirms"""
    return record.terms.expires_at < current_time + block_time_estimate


def commitment_hash(record: OrderRecord) -> bytes:
    return compute_commitment_hash(record.terms, record.offer)


class OrderLifecycle:
    """Drives order records through their lifecycle against a ledger oracle"""

    def __init__(self, oracle: LedgerOracle, registry: TokenRegistry, config: ProtocolConfig):
        self.oracle = oracle
        self.registry = registry
        self.config = config
        self.simple_translator = SimpleInterestTermsTranslator()
        self.collateralized_translator = CollateralizedSimpleInterestTermsTranslator()

    # Creation

    def _amount(self, amount: Optional[Decimal], symbol: str) -> Optional[TokenAmount]:
        if amount is None:
            return None
        return TokenAmount.from_decimal(amount, symbol, self.registry.get_token(symbol).decimals)

    def _with_parameters(self, kind: OrderKind, terms: OrderTerms) -> OrderTerms:
        """Recompute the terms contract and its packed parameters for `terms`"""
        if kind is OrderKind.DEBT_ORDER and terms.collateral.raw_amount == 0:
            contract = self.config.simple_interest_terms_contract
            params = self.simple_translator.parameters_for(terms, self.registry)
        else:
            contract = self.config.collateralized_terms_contract
            params = self.collateralized_translator.parameters_for(terms, self.registry)
        return replace(terms, terms_contract=contract, terms_contract_parameters=params)

    async def _build_terms(
        self,
        kind: OrderKind,
        principal_amount: Decimal,
        principal_token: str,
        collateral_amount: Decimal,
        collateral_token: str,
        interest_rate: Decimal,
        term_length: TimeInterval,
        expires_in: TimeInterval,
        **extra,
    ) -> OrderTerms:
        principal_info = self.registry.get_token(principal_token)
        collateral_info = self.registry.get_token(collateral_token)
        current_time = await self.oracle.get_current_time()

        terms = OrderTerms(
            kernel_version=self.config.kernel_version,
            issuance_version=self.config.issuance_version,
            terms_contract=self.config.collateralized_terms_contract,
            principal=TokenAmount.from_decimal(
                principal_amount, principal_info.symbol, principal_info.decimals
            ),
            principal_token=principal_info.address,
            collateral=TokenAmount.from_decimal(
                collateral_amount, collateral_info.symbol, collateral_info.decimals
            ),
            collateral_token=collateral_info.address,
            interest_rate=InterestRate.from_percent(interest_rate),
            term_length=term_length,
            expires_at=expires_in.from_timestamp(current_time),
            salt=generate_salt(self.config.salt_decimals),
            terms_contract_parameters=b"\x00" * 32,
            **extra,
        )
        return self._with_parameters(kind, terms)

    async def create_loan_request(
        self, params: LoanRequestParams, signer: Optional[Signer] = None
    ) -> OrderRecord:
        """Plain debt order; signed as debtor immediately when a signer is given"""
        terms = await self._build_terms(
            OrderKind.DEBT_ORDER,
            params.principal_amount,
            params.principal_token,
            params.collateral_amount,
            params.collateral_token,
            params.interest_rate,
            params.term_length,
            params.expires_in,
            debtor_fee=self._amount(params.debtor_fee, params.principal_token),
            creditor_fee=self._amount(params.creditor_fee, params.principal_token),
            relayer=params.relayer,
            relayer_fee=self._amount(params.relayer_fee, params.principal_token),
            underwriter_fee=self._amount(params.underwriter_fee, params.principal_token),
            underwriter_risk_rating=params.underwriter_risk_rating,
            grace_period_in_days=params.grace_period_in_days,
        )
        record = OrderRecord(kind=OrderKind.DEBT_ORDER, terms=terms, collateral_set=True)
        if params.debtor is not None:
            record.parties[Role.DEBTOR] = params.debtor
        if params.underwriter is not None:
            record.parties[Role.UNDERWRITER] = params.underwriter

        logger.info(
            "Debt order created",
            extra={"order_id": str(record.id), "commitment_hash": commitment_hash(record).hex()},
        )
        if signer is not None:
            await self.sign_as_debtor(record, signer, params.debtor)
        return record

    async def create_offer(
        self, params: OfferParams, kind: OrderKind = OrderKind.MAX_LTV_OFFER
    ) -> OrderRecord:
        """Loan offer whose collateral amount is negotiated after the creditor signs"""
        if kind is OrderKind.DEBT_ORDER:
            raise PreconditionError("Offers must be MAX_LTV_OFFER or LTV_OFFER")
        terms = await self._build_terms(
            kind,
            params.principal_amount,
            params.principal_token,
            Decimal(0),
            params.collateral_token,
            params.interest_rate,
            params.term_length,
            params.expires_in,
            debtor_fee=self._amount(params.debtor_fee, params.principal_token),
            creditor_fee=self._amount(params.creditor_fee, params.principal_token),
            relayer=params.relayer,
            relayer_fee=self._amount(params.relayer_fee, params.principal_token),
            grace_period_in_days=params.grace_period_in_days,
        )
        record = OrderRecord(
            kind=kind,
            terms=terms,
            offer=OfferTerms(ltv=Decimal(params.ltv), price_provider=params.price_provider),
        )
        logger.info(
            "Loan offer created",
            extra={"order_id": str(record.id), "kind": kind.value},
        )
        return record

    # Amendments

    def amend_terms(self, record: OrderRecord, **changes) -> OrderTerms:
        """Replace terms on an unsigned record; always draws a fresh salt"""
        if "salt" in changes:
            raise ValidationError("Amendments draw a fresh salt; salt cannot be supplied")
        if record.signatures:
            raise TermsFrozenError(f"Order {record.id} has signatures; create a new order instead")
        terms = replace(record.terms, **changes, salt=generate_salt(self.config.salt_decimals))
        record.terms = self._with_parameters(record.kind, terms)
        return record.terms

    async def set_expiration(self, record: OrderRecord, expires_in: TimeInterval) -> int:
        current_time = await self.oracle.get_current_time()
        return self.amend_terms(record, expires_at=expires_in.from_timestamp(current_time)).expires_at

    def _assert_negotiable(self, record: OrderRecord) -> None:
        if not record.is_offer:
            raise PreconditionError("Only loan offers carry negotiable prices and collateral")
        if record.phase is Phase.COMMITTED:
            raise OrderCommittedError(f"Order {record.id} is already committed by the debtor")

    def _check_price(self, record: OrderRecord, price: SignedPrice, token: EthereumAddress) -> None:
        if price.token_address != token:
            raise PriceTokenMismatchError(
                f"Price quotes {price.token_address}, expected {token}"
            )
        payload = price_payload_hash(price.token_address, price.token_price, price.timestamp)
        if not is_valid_signature(payload, price.provider_signature, record.offer.price_provider):
            raise PriceSignatureError(f"Price was not signed by {record.offer.price_provider}")

    def set_principal_price(self, record: OrderRecord, price: SignedPrice) -> None:
        self._assert_negotiable(record)
        self._check_price(record, price, record.terms.principal_token)
        record.negotiation.principal_price = price
        self._derive_collateral(record)

    def set_collateral_price(self, record: OrderRecord, price: SignedPrice) -> None:
        self._assert_negotiable(record)
        self._check_price(record, price, record.terms.collateral_token)
        record.negotiation.collateral_price = price
        self._derive_collateral(record)

    def _apply_collateral(self, record: OrderRecord, amount: Decimal) -> None:
        symbol = record.terms.collateral.token_symbol
        collateral = TokenAmount.from_decimal(amount, symbol, self.registry.get_token(symbol).decimals)
        terms = replace(record.terms, collateral=collateral)
        record.terms = self._with_parameters(record.kind, terms)
        record.collateral_set = collateral.raw_amount > 0

    def set_collateral_amount(self, record: OrderRecord, amount: Decimal) -> None:
        """Debtor-chosen collateral for a max-LTV offer; sufficiency is checked at signing"""
        self._assert_negotiable(record)
        if record.kind is not OrderKind.MAX_LTV_OFFER:
            raise PreconditionError("Fixed-LTV offers derive their collateral from prices")
        self._apply_collateral(record, Decimal(amount))

    def _derive_collateral(self, record: OrderRecord) -> None:
        negotiation = record.negotiation
        if record.kind is not OrderKind.LTV_OFFER:
            return
        if negotiation.principal_price is None or negotiation.collateral_price is None:
            return
        symbol = record.terms.collateral.token_symbol
        amount = collateral_checks.required_collateral(
            record.terms.principal,
            negotiation.principal_price,
            negotiation.collateral_price,
            record.offer.ltv,
            symbol,
            self.registry.get_token(symbol).decimals,
        )
        self._apply_collateral(record, amount)

    def check_collateral(self, record: OrderRecord) -> Decimal:
        """LTV ratio of the offer, raising a distinct error per unmet precondition"""
        negotiation = record.negotiation
        collateral_amount = record.terms.collateral.decimal_amount if record.collateral_set else None
        return collateral_checks.assert_sufficient(
            record.terms.principal,
            collateral_amount,
            record.terms.collateral.token_symbol,
            negotiation.principal_price,
            negotiation.collateral_price,
            record.offer.ltv,
        )

    # Signing

    def is_signed_by(self, record: OrderRecord, role: Role) -> bool:
        return is_signed_by(record, role, self.config.decision_engine)

    def signing_hash(
        self, record: OrderRecord, role: Role, address: Optional[EthereumAddress] = None
    ) -> bytes:
        """Hash `role` must sign, as if `address` were bound to that role"""
        parties = dict(record.parties)
        if address is not None:
            parties[role] = address
        return role_hash(record, role, self.config.decision_engine, parties)

    async def _acting_address(self, address: Optional[EthereumAddress]) -> EthereumAddress:
        if address is not None:
            return address
        return await self.oracle.resolve_current_user_address()

    async def _attach(
        self, record: OrderRecord, role: Role, signer: Signer, address: Optional[EthereumAddress]
    ) -> SignatureEntry:
        address = await self._acting_address(address or record.parties.get(role))
        entry = await attach_signature(record, role, address, signer, self.config.decision_engine)
        logger.info(
            "Signature attached",
            extra={"order_id": str(record.id), "role": role.value, "signer": address.value},
        )
        return entry

    async def sign_as_debtor(
        self, record: OrderRecord, signer: Signer, debtor: Optional[EthereumAddress] = None
    ) -> SignatureEntry:
        """
        Commit the debtor. Idempotent for plain debt orders; offers raise
        AlreadySignedError and gate on prices, collateral and LTV in that order.
        """
        if record.is_offer:
            if self.is_signed_by(record, Role.DEBTOR):
                raise AlreadySignedError(Role.DEBTOR.value)
            self.check_collateral(record)
        entry = await self._attach(record, Role.DEBTOR, signer, debtor)
        record.phase = Phase.COMMITTED
        return entry

    async def sign_as_creditor(
        self, record: OrderRecord, signer: Signer, creditor: Optional[EthereumAddress] = None
    ) -> SignatureEntry:
        return await self._attach(record, Role.CREDITOR, signer, creditor)

    async def sign_as_underwriter(
        self, record: OrderRecord, signer: Signer, underwriter: Optional[EthereumAddress] = None
    ) -> SignatureEntry:
        return await self._attach(record, Role.UNDERWRITER, signer, underwriter)

    # Ledger observation

    def debt_order_hash(self, record: OrderRecord) -> bytes:
        return compute_debt_order_hash(record.terms, record.debtor, record.underwriter)

    async def is_expired(self, record: OrderRecord) -> bool:
        current_time = await self.oracle.get_current_time()
        return is_expired_at(record, current_time, self.config.block_time_estimate_seconds)

    async def refresh_ledger_state(self, record: OrderRecord) -> LedgerState:
        """Pull fill/cancel status from the oracle; drafts without a debtor cannot be on-ledger"""
        if record.debtor is None:
            return record.ledger_state
        order_hash = self.debt_order_hash(record)
        if await self.oracle.is_filled(order_hash):
            record.ledger_state = LedgerState.FILLED
        elif await self.oracle.is_cancelled(order_hash):
            record.ledger_state = LedgerState.CANCELLED
        return record.ledger_state

    def local_status(self, record: OrderRecord) -> OrderStatus:
        """Status knowable without the ledger"""
        if record.ledger_state is LedgerState.FILLED:
            return OrderStatus.FILLED
        if record.ledger_state is LedgerState.CANCELLED:
            return OrderStatus.CANCELLED
        if self.is_signed_by(record, Role.DEBTOR):
            return OrderStatus.DEBTOR_COMMITTED
        return OrderStatus.DRAFT

    async def observe_status(self, record: OrderRecord) -> OrderStatus:
        await self.refresh_ledger_state(record)
        status = self.local_status(record)
        if status is OrderStatus.DEBTOR_COMMITTED:
            return OrderStatus.EXPIRED if await self.is_expired(record) else OrderStatus.OPEN
        return status

    async def _assert_fillable(self, record: OrderRecord, *roles: Role) -> None:
        await self.refresh_ledger_state(record)
        if record.is_final:
            raise OrderFinalizedError(f"Order {record.id} is {record.ledger_state.value}")
        for role in roles:
            if not self.is_signed_by(record, role):
                raise OrderNotFillableError(f"Order {record.id} lacks a valid {role.value} signature")
        if record.underwriter is not None and not self.is_signed_by(record, Role.UNDERWRITER):
            raise OrderNotFillableError(f"Order {record.id} lacks the underwriter's signature")
        if await self.is_expired(record):
            raise OrderNotFillableError(f"Order {record.id} expires before the next block")

    # Settlement

    async def fill(
        self, record: OrderRecord, signer: Signer, creditor: Optional[EthereumAddress] = None
    ) -> str:
        """Countersign a debtor-signed order as creditor and submit it for settlement"""
        if record.is_offer:
            raise PreconditionError("Offers are settled by the debtor through accept_offer")
        await self._assert_fillable(record, Role.DEBTOR)
        creditor = await self._acting_address(creditor)
        await self.sign_as_creditor(record, signer, creditor)

        receipt = await self.oracle.submit_fill(record, creditor)
        logger.info("Fill submitted", extra={"order_id": str(record.id), "receipt": receipt})
        await self.refresh_ledger_state(record)
        return receipt

    async def accept_offer(self, record: OrderRecord, debtor: Optional[EthereumAddress] = None) -> str:
        """Submit a doubly-signed offer as its debtor"""
        if not record.is_offer:
            raise PreconditionError("Debt orders are settled by the creditor through fill")
        await self._assert_fillable(record, Role.CREDITOR, Role.DEBTOR)
        debtor = await self._acting_address(debtor or record.debtor)
        if debtor != record.debtor:
            raise SignerMismatchError(f"Only the debtor {record.debtor} may accept this offer")

        receipt = await self.oracle.submit_fill(record, debtor)
        logger.info("Offer accepted", extra={"order_id": str(record.id), "receipt": receipt})
        await self.refresh_ledger_state(record)
        return receipt

    async def cancel(self, record: OrderRecord, debtor: Optional[EthereumAddress] = None) -> Optional[str]:
        """
        Debtor cancellation before fill. Returns None if the ledger already
        reports the order cancelled.
        """
        debtor = await self._acting_address(debtor or record.debtor)
        if record.debtor is None:
            raise MissingFieldError("debtor")
        if debtor != record.debtor:
            raise SignerMismatchError(f"Only the debtor {record.debtor} may cancel this order")

        state = await self.refresh_ledger_state(record)
        if state is LedgerState.CANCELLED:
            logger.info("Order already cancelled", extra={"order_id": str(record.id)})
            return None
        if state is LedgerState.FILLED:
            raise OrderFinalizedError(f"Order {record.id} is already filled")

        receipt = await self.oracle.submit_cancel(record, debtor)
        logger.info("Cancel submitted", extra={"order_id": str(record.id), "receipt": receipt})
        await self.refresh_ledger_state(record)
        return receipt
