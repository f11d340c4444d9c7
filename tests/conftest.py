"""Pytest fixtures for testing"""

from decimal import Decimal
from typing import Callable, Dict, Generator, List, Set, Tuple

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from debt_gateway.api.dependencies import get_ledger_client, get_token_registry
from debt_gateway.api.main import create_app
from debt_gateway.domain.encoding import compute_debt_order_hash, price_payload_hash
from debt_gateway.domain.lifecycle import OrderLifecycle, ProtocolConfig
from debt_gateway.domain.models import ECDSASignature, OrderRecord, OrderTerms, SignedPrice
from debt_gateway.domain.ports import TokenInfo
from debt_gateway.domain.values import EthereumAddress, InterestRate, TimeInterval, TokenAmount
from debt_gateway.infrastructure.clients.signer import LocalAccountSigner
from debt_gateway.infrastructure.clients.tokens import StaticTokenRegistry
from debt_gateway.infrastructure.database.models import Base
from debt_gateway.infrastructure.database.session import get_db

# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

GENESIS_TIME = 1_700_000_000

DEBTOR_KEY = "0x" + "11" * 32
CREDITOR_KEY = "0x" + "22" * 32
UNDERWRITER_KEY = "0x" + "33" * 32
PRICE_PROVIDER_KEY = "0x" + "44" * 32

REP = TokenInfo("REP", EthereumAddress("0x" + "01" * 20), 0, 18)
WETH = TokenInfo("WETH", EthereumAddress("0x" + "02" * 20), 1, 18)
USDC = TokenInfo("USDC", EthereumAddress("0x" + "03" * 20), 2, 6)


class FakeLedgerOracle:
    """In-memory ledger: settable clock, fill/cancel sets keyed by debt order hash"""

    def __init__(self, current_time: int = GENESIS_TIME, current_user: EthereumAddress | None = None):
        self.current_time = current_time
        self.current_user = current_user
        self.filled: Set[bytes] = set()
        self.cancelled: Set[bytes] = set()
        self.submissions: List[Tuple[str, OrderRecord, EthereumAddress]] = []

    async def get_current_time(self) -> int:
        return self.current_time

    async def is_filled(self, commitment_hash: bytes) -> bool:
        return commitment_hash in self.filled

    async def is_cancelled(self, commitment_hash: bytes) -> bool:
        return commitment_hash in self.cancelled

    def _hash(self, record: OrderRecord) -> bytes:
        return compute_debt_order_hash(record.terms, record.debtor, record.underwriter)

    async def submit_fill(self, record: OrderRecord, acting_address: EthereumAddress) -> str:
        self.submissions.append(("fill", record, acting_address))
        self.filled.add(self._hash(record))
        return f"0xfill{len(self.submissions)}"

    async def submit_cancel(self, record: OrderRecord, acting_address: EthereumAddress) -> str:
        self.submissions.append(("cancel", record, acting_address))
        self.cancelled.add(self._hash(record))
        return f"0xcancel{len(self.submissions)}"

    async def resolve_current_user_address(self) -> EthereumAddress:
        if self.current_user is None:
            raise LookupError("No current user")
        return self.current_user


@pytest.fixture
def debtor_account() -> LocalAccount:
    return Account.from_key(DEBTOR_KEY)


@pytest.fixture
def creditor_account() -> LocalAccount:
    return Account.from_key(CREDITOR_KEY)


@pytest.fixture
def underwriter_account() -> LocalAccount:
    return Account.from_key(UNDERWRITER_KEY)


@pytest.fixture
def price_provider_account() -> LocalAccount:
    return Account.from_key(PRICE_PROVIDER_KEY)


@pytest.fixture
def debtor(debtor_account: LocalAccount) -> EthereumAddress:
    return EthereumAddress(debtor_account.address)


@pytest.fixture
def creditor(creditor_account: LocalAccount) -> EthereumAddress:
    return EthereumAddress(creditor_account.address)


@pytest.fixture
def underwriter(underwriter_account: LocalAccount) -> EthereumAddress:
    return EthereumAddress(underwriter_account.address)


@pytest.fixture
def price_provider(price_provider_account: LocalAccount) -> EthereumAddress:
    return EthereumAddress(price_provider_account.address)


@pytest.fixture
def signer() -> LocalAccountSigner:
    """Holds the keys of every test party"""
    return LocalAccountSigner.from_keys(DEBTOR_KEY, CREDITOR_KEY, UNDERWRITER_KEY)


@pytest.fixture
def registry() -> StaticTokenRegistry:
    return StaticTokenRegistry([REP, WETH, USDC])


@pytest.fixture
def protocol() -> ProtocolConfig:
    return ProtocolConfig(
        kernel_version=EthereumAddress("0x" + "a1" * 20),
        issuance_version=EthereumAddress("0x" + "a2" * 20),
        simple_interest_terms_contract=EthereumAddress("0x" + "a3" * 20),
        collateralized_terms_contract=EthereumAddress("0x" + "a4" * 20),
        decision_engine=EthereumAddress("0x" + "a5" * 20),
        block_time_estimate_seconds=15,
    )


@pytest.fixture
def oracle() -> FakeLedgerOracle:
    return FakeLedgerOracle()


@pytest.fixture
def lifecycle(oracle: FakeLedgerOracle, registry: StaticTokenRegistry, protocol: ProtocolConfig) -> OrderLifecycle:
    return OrderLifecycle(oracle, registry, protocol)


@pytest.fixture
def sign_price(price_provider_account: LocalAccount):
    """Build a SignedPrice attested by the test price provider"""

    def _sign(token: TokenInfo, price: str, timestamp: int = GENESIS_TIME) -> SignedPrice:
        payload = price_payload_hash(token.address, Decimal(price), timestamp)
        signed = price_provider_account.sign_message(encode_defunct(primitive=payload))
        return SignedPrice(
            token_address=token.address,
            token_price=Decimal(price),
            timestamp=timestamp,
            provider_signature=ECDSASignature(
                v=signed.v,
                r="0x" + signed.r.to_bytes(32, "big").hex(),
                s="0x" + signed.s.to_bytes(32, "big").hex(),
            ),
        )

    return _sign


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db: Session, oracle: FakeLedgerOracle, registry: StaticTokenRegistry) -> TestClient:
    """Create FastAPI test client with test database, fake ledger and test tokens"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ledger_client] = lambda: oracle
    app.dependency_overrides[get_token_registry] = lambda: registry
    return TestClient(app)


@pytest.fixture
def wallet_sign() -> Callable[[LocalAccount, bytes], Dict[str, object]]:
    """Signature triple over a personal-message-prefixed hash, as wallets produce it"""

    def _sign(account: LocalAccount, payload: bytes) -> Dict[str, object]:
        signed = account.sign_message(encode_defunct(primitive=payload))
        return {
            "v": signed.v,
            "r": "0x" + signed.r.to_bytes(32, "big").hex(),
            "s": "0x" + signed.s.to_bytes(32, "big").hex(),
        }

    return _sign


@pytest.fixture
def make_terms(protocol: ProtocolConfig):
    """OrderTerms for 100 REP against 200 WETH, overridable per field"""

    def _make(**overrides) -> OrderTerms:
        fields = dict(
            kernel_version=protocol.kernel_version,
            issuance_version=protocol.issuance_version,
            terms_contract=protocol.collateralized_terms_contract,
            principal=TokenAmount.from_decimal("100", "REP", 18),
            principal_token=REP.address,
            collateral=TokenAmount.from_decimal("200", "WETH", 18),
            collateral_token=WETH.address,
            interest_rate=InterestRate.from_percent("12.5"),
            term_length=TimeInterval(6, "months"),
            expires_at=GENESIS_TIME + 3600,
            salt=42,
            terms_contract_parameters=b"\x00" * 32,
        )
        fields.update(overrides)
        return OrderTerms(**fields)

    return _make
