"""Data access layer for debt orders"""

import uuid
from typing import List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from debt_gateway.domain.encoding import compute_commitment_hash, compute_debt_order_hash
from debt_gateway.domain.exceptions import ConcurrentUpdateError
from debt_gateway.domain.interchange import from_interchange, to_interchange
from debt_gateway.domain.models import OrderRecord
from debt_gateway.domain.signatures import merge_concurrent
from debt_gateway.domain.values import EthereumAddress
from debt_gateway.infrastructure.database.models import DebtOrderRow


class OrderRepository:
    """Repository for order records"""

    def __init__(self, db: Session):
        self.db = db

    def save(self, record: OrderRecord) -> DebtOrderRow:
        """
        Insert or update the record's row; caller commits.

        The row is read under a row lock. If another request saved it after
        `record` was loaded, that request's signatures are merged into `record`
        instead of being overwritten.
        """
        row = self.db.get(DebtOrderRow, record.id, with_for_update=True, populate_existing=True)
        if row is None:
            row = DebtOrderRow(id=record.id)
            self.db.add(row)
        elif row.version != record.revision:
            merge_concurrent(record, from_interchange(row.payload))

        row.kind = record.kind.value
        row.phase = record.phase.value
        row.ledger_state = record.ledger_state.value
        row.commitment_hash = "0x" + compute_commitment_hash(record.terms, record.offer).hex()
        row.debt_order_hash = None
        row.debtor = None
        if record.debtor is not None:
            row.debtor = record.debtor.value
            order_hash = compute_debt_order_hash(record.terms, record.debtor, record.underwriter)
            row.debt_order_hash = "0x" + order_hash.hex()
        row.payload = to_interchange(record)
        try:
            self.db.flush()
        except StaleDataError as e:
            raise ConcurrentUpdateError(f"Order {record.id} was updated by another request") from e
        record.revision = row.version
        return row

    def get(self, order_id: uuid.UUID) -> Optional[OrderRecord]:
        row = self.db.get(DebtOrderRow, order_id)
        if row is None:
            return None
        record = from_interchange(row.payload)
        record.revision = row.version
        return record

    def get_orders_by_debtor(self, debtor: EthereumAddress, limit: int = 20) -> List[DebtOrderRow]:
        """Fetch recent orders for a debtor"""
        return (
            self.db.query(DebtOrderRow)
            .filter(DebtOrderRow.debtor == debtor.value)
            .order_by(DebtOrderRow.created_at.desc())
            .limit(limit)
            .all()
        )
