"""Signer implementations: local private keys and client-supplied signatures"""

import logging
from typing import Dict, Iterable

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

from debt_gateway.domain.models import ECDSASignature, Role
from debt_gateway.domain.values import EthereumAddress

logger = logging.getLogger(__name__)


def _to_hex32(value: int) -> str:
    return "0x" + value.to_bytes(32, "big").hex()


class LocalAccountSigner:
    """Signs with in-process keys; used by tests and operator tooling"""

    def __init__(self, accounts: Iterable[LocalAccount]):
        self.accounts: Dict[EthereumAddress, LocalAccount] = {
            EthereumAddress(account.address): account for account in accounts
        }

    @classmethod
    def from_keys(cls, *private_keys: str) -> "LocalAccountSigner":
        return cls(Account.from_key(key) for key in private_keys)

    async def sign_as_role(
        self, payload_hash: bytes, signer_address: EthereumAddress, role: Role
    ) -> ECDSASignature:
        account = self.accounts.get(signer_address)
        if account is None:
            raise KeyError(f"No key held for {signer_address}")
        signed = account.sign_message(encode_defunct(primitive=payload_hash))
        logger.debug("Signed payload", extra={"role": role.value, "signer": signer_address.value})
        return ECDSASignature(v=signed.v, r=_to_hex32(signed.r), s=_to_hex32(signed.s))


class PresignedSigner:
    """
    Hands back a signature the party produced elsewhere, e.g. in a wallet.

    The lifecycle verifies it by recovery like any other signer output.
    """

    def __init__(self, signature: ECDSASignature):
        self.signature = signature

    async def sign_as_role(
        self, payload_hash: bytes, signer_address: EthereumAddress, role: Role
    ) -> ECDSASignature:
        return self.signature
