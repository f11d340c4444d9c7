"""Signature ledger: role-tagged signatures accumulated against commitment hashes"""

import logging
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys.exceptions import BadSignature
from eth_utils.exceptions import ValidationError as EthValidationError

from debt_gateway.domain.encoding import role_hash
from debt_gateway.domain.exceptions import (
    ConcurrentUpdateError,
    InvalidSignatureError,
    OrderFinalizedError,
    SignerMismatchError,
    TermsFrozenError,
)
from debt_gateway.domain.models import ECDSASignature, OrderRecord, Phase, Role, SignatureEntry
from debt_gateway.domain.ports import Signer
from debt_gateway.domain.values import EthereumAddress

logger = logging.getLogger(__name__)

# Roles whose address enters the issuance hash
ISSUANCE_PARTIES = (Role.DEBTOR, Role.UNDERWRITER)


def recover_signer(payload_hash: bytes, signature: ECDSASignature) -> Optional[EthereumAddress]:
    """Address that produced `signature` over the prefixed payload, or None if unrecoverable"""
    message = encode_defunct(primitive=payload_hash)
    try:
        recovered = Account.recover_message(message, vrs=(signature.v, signature.r, signature.s))
    except (BadSignature, EthValidationError, ValueError, TypeError):
        return None
    return EthereumAddress(recovered)


def is_valid_signature(
    payload_hash: bytes, signature: ECDSASignature, signer_address: EthereumAddress
) -> bool:
    return recover_signer(payload_hash, signature) == signer_address


def _binds_signed_hash(record: OrderRecord, role: Role) -> bool:
    """True if binding a new `role` address would change a hash someone already signed"""
    if role not in ISSUANCE_PARTIES or role in record.parties:
        return False
    # An offer's creditor signs the outer terms hash, which names no parties
    return any(
        not (signed_role is Role.CREDITOR and record.is_offer) for signed_role in record.signatures
    )


def is_signed_by(record: OrderRecord, role: Role, decision_engine: EthereumAddress) -> bool:
    """
    True only if a signature for `role` is present and recovers to its signer
    against the role's commitment hash. Invalid signatures count as absent.
    """
    entry = record.signatures.get(role)
    if entry is None:
        return False
    parties = dict(record.parties)
    parties.setdefault(role, entry.signer_address)
    payload = role_hash(record, role, decision_engine, parties)
    return is_valid_signature(payload, entry.signature, entry.signer_address)


async def attach_signature(
    record: OrderRecord,
    role: Role,
    signer_address: EthereumAddress,
    signer: Signer,
    decision_engine: EthereumAddress,
) -> SignatureEntry:
    """
    Ask `signer` to sign the role's commitment hash and store the result.

    No-op returning the stored entry if the role is already validly signed.
    On any failure the record is left unchanged.
    """
    if record.is_final:
        raise OrderFinalizedError(f"Order {record.id} is {record.ledger_state.value}")

    if is_signed_by(record, role, decision_engine):
        return record.signatures[role]

    bound = record.parties.get(role)
    if bound is not None and bound != signer_address:
        raise SignerMismatchError(f"{role.value} is bound to {bound}, not {signer_address}")
    if _binds_signed_hash(record, role):
        raise TermsFrozenError(f"Cannot bind a new {role.value} after other parties signed")

    parties = dict(record.parties)
    parties[role] = signer_address
    payload = role_hash(record, role, decision_engine, parties)

    signature = await signer.sign_as_role(payload, signer_address, role)

    async with record.lock:
        # First valid signature wins if another attach raced us while signing
        if is_signed_by(record, role, decision_engine):
            logger.info(
                "Discarding concurrent signature",
                extra={"order_id": str(record.id), "role": role.value},
            )
            return record.signatures[role]

        if not is_valid_signature(payload, signature, signer_address):
            raise InvalidSignatureError(
                f"Signature for {role.value} does not recover to {signer_address}"
            )

        entry = SignatureEntry(role=role, signer_address=signer_address, signature=signature)
        record.parties[role] = signer_address
        record.signatures[role] = entry
        return entry


def merge_concurrent(record: OrderRecord, stored: OrderRecord) -> None:
    """
    Fold what a concurrent writer persisted into `record` before it is saved.

    Signatures for roles only `stored` holds are adopted; where both copies
    signed the same role the stored entry wins, being first. The copies must
    commit to the same terms and issuance parties, otherwise the merged
    signatures would not recover and ConcurrentUpdateError is raised.
    """
    if (record.kind, record.terms, record.offer) != (stored.kind, stored.terms, stored.offer):
        raise ConcurrentUpdateError(f"Order {record.id} terms were changed by another request")

    for role in ISSUANCE_PARTIES:
        mine, theirs = record.parties.get(role), stored.parties.get(role)
        if mine is not None and theirs is not None and mine != theirs:
            raise ConcurrentUpdateError(f"Order {record.id} {role.value} was bound by another request")
        if (theirs is not None and _binds_signed_hash(record, role)) or (
            mine is not None and _binds_signed_hash(stored, role)
        ):
            raise ConcurrentUpdateError(
                f"Order {record.id} {role.value} was bound after another request's signature"
            )

    for role, entry in stored.signatures.items():
        if record.signatures.get(role) != entry:
            logger.info(
                "Adopting concurrently stored signature",
                extra={"order_id": str(record.id), "role": role.value},
            )
        record.signatures[role] = entry
        record.parties[role] = entry.signer_address
    for role, address in stored.parties.items():
        record.parties.setdefault(role, address)

    record.collateral_set = record.collateral_set or stored.collateral_set
    if stored.phase is Phase.COMMITTED:
        record.phase = Phase.COMMITTED
    if stored.is_final and not record.is_final:
        record.ledger_state = stored.ledger_state
