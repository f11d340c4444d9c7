"""Collaborator contracts consumed by the order lifecycle"""

from dataclasses import dataclass
from typing import Protocol

from debt_gateway.domain.models import ECDSASignature, OrderRecord, Role
from debt_gateway.domain.values import EthereumAddress


class LedgerOracle(Protocol):
    """System of record for block time and fill/cancel status"""

    async def get_current_time(self) -> int: ...

    async def is_filled(self, commitment_hash: bytes) -> bool: ...

    async def is_cancelled(self, commitment_hash: bytes) -> bool: ...

    async def submit_fill(self, record: OrderRecord, acting_address: EthereumAddress) -> str: ...

    async def submit_cancel(self, record: OrderRecord, acting_address: EthereumAddress) -> str: ...

    async def resolve_current_user_address(self) -> EthereumAddress: ...


class Signer(Protocol):
    """Only component that holds signing material; may wait on user approval"""

    async def sign_as_role(
        self, payload_hash: bytes, signer_address: EthereumAddress, role: Role
    ) -> ECDSASignature: ...


@dataclass(frozen=True)
class TokenInfo:
    symbol: str
    address: EthereumAddress
    index: int
    decimals: int


class TokenRegistry(Protocol):
    def get_token(self, symbol: str) -> TokenInfo: ...

    def get_token_by_index(self, index: int) -> TokenInfo: ...
