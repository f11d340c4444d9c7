"""Domain models - dataclasses for the debt order, its terms and its signatures"""

import asyncio
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional

from debt_gateway.domain.values import EthereumAddress, InterestRate, TimeInterval, TokenAmount


class Role(str, Enum):
    DEBTOR = "debtor"
    CREDITOR = "creditor"
    UNDERWRITER = "underwriter"


class OrderKind(str, Enum):
    """Closed set of order variants sharing one commitment/signature core"""

    DEBT_ORDER = "debt_order"
    MAX_LTV_OFFER = "max_ltv_offer"
    LTV_OFFER = "ltv_offer"


class Phase(str, Enum):
    NEGOTIABLE = "negotiable"  # negotiable fields settable, debtor has not committed
    COMMITTED = "committed"  # debtor signed; only signature attachment permitted


class LedgerState(str, Enum):
    UNSUBMITTED = "unsubmitted"
    FILLED = "filled"
    CANCELLED = "cancelled"


class OrderStatus(str, Enum):
    DRAFT = "draft"
    DEBTOR_COMMITTED = "debtor_committed"
    OPEN = "open"
    EXPIRED = "expired"
    FILLED = "filled"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ECDSASignature:
    """Recoverable secp256k1 signature; r and s are 0x-prefixed 32-byte hex"""

    v: int
    r: str
    s: str


@dataclass(frozen=True)
class SignatureEntry:
    role: Role
    signer_address: EthereumAddress
    signature: ECDSASignature


@dataclass(frozen=True)
class SignedPrice:
    """Price attestation from a price feed provider (USD per whole token)"""

    token_address: EthereumAddress
    token_price: Decimal
    timestamp: int
    provider_signature: ECDSASignature


@dataclass(frozen=True)
class OrderTerms:
    """
    Economic commitment payload.

    Frozen: any change goes through `lifecycle.amend_terms`, which draws a new
    salt so signatures over old terms can never be replayed.
    """

    kernel_version: EthereumAddress
    issuance_version: EthereumAddress
    terms_contract: EthereumAddress
    principal: TokenAmount
    principal_token: EthereumAddress
    collateral: TokenAmount
    collateral_token: EthereumAddress
    interest_rate: InterestRate
    term_length: TimeInterval
    expires_at: int
    salt: int
    terms_contract_parameters: bytes
    debtor_fee: Optional[TokenAmount] = None
    creditor_fee: Optional[TokenAmount] = None
    relayer: Optional[EthereumAddress] = None
    relayer_fee: Optional[TokenAmount] = None
    underwriter_fee: Optional[TokenAmount] = None
    underwriter_risk_rating: int = 0
    grace_period_in_days: int = 0


@dataclass(frozen=True)
class OfferTerms:
    """Extra terms carried by LTV offers; the LTV enters the creditor's hash"""

    ltv: Decimal  # percent, e.g. Decimal("60")
    price_provider: EthereumAddress


@dataclass
class Negotiation:
    """Transient price quotes for an offer; never serialized"""

    principal_price: Optional[SignedPrice] = None
    collateral_price: Optional[SignedPrice] = None


@dataclass
class OrderRecord:
    """Aggregate: terms, parties, at most one signature per role, and ledger state"""

    kind: OrderKind
    terms: OrderTerms
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    offer: Optional[OfferTerms] = None
    collateral_set: bool = False
    parties: Dict[Role, EthereumAddress] = field(default_factory=dict)
    signatures: Dict[Role, SignatureEntry] = field(default_factory=dict)
    phase: Phase = Phase.NEGOTIABLE
    ledger_state: LedgerState = LedgerState.UNSUBMITTED
    negotiation: Negotiation = field(default_factory=Negotiation, repr=False, compare=False)
    # persisted row version this copy was loaded at; 0 until first saved
    revision: int = field(default=0, repr=False, compare=False)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def debtor(self) -> Optional[EthereumAddress]:
        return self.parties.get(Role.DEBTOR)

    @property
    def creditor(self) -> Optional[EthereumAddress]:
        return self.parties.get(Role.CREDITOR)

    @property
    def underwriter(self) -> Optional[EthereumAddress]:
        return self.parties.get(Role.UNDERWRITER)

    @property
    def is_offer(self) -> bool:
        return self.kind in (OrderKind.MAX_LTV_OFFER, OrderKind.LTV_OFFER)

    @property
    def is_final(self) -> bool:
        return self.ledger_state is not LedgerState.UNSUBMITTED
