"""SQLAlchemy ORM models for persisted debt orders"""

import uuid

from sqlalchemy import JSON, Column, DateTime, Integer, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class DebtOrderRow(Base):
    """Debt order or loan offer, stored as its interchange document plus indexed columns"""

    __tablename__ = "debt_order"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    kind = Column(Text, nullable=False)
    phase = Column(Text, nullable=False)
    ledger_state = Column(Text, nullable=False, default="unsubmitted")
    commitment_hash = Column(Text, nullable=False, index=True)
    debt_order_hash = Column(Text, nullable=True, index=True)
    debtor = Column(Text, nullable=True, index=True)
    payload = Column(JSON, nullable=False)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}
