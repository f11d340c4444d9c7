"""Dependency injection for FastAPI endpoints"""

import uuid

from fastapi import Depends, HTTPException, Request

from debt_gateway.config import Settings, settings
from debt_gateway.domain.exceptions import (
    DomainException,
    InsufficientCollateralError,
    InvalidSignatureError,
    LedgerOracleError,
    PreconditionError,
    ValidationError,
)
from debt_gateway.domain.lifecycle import OrderLifecycle, ProtocolConfig
from debt_gateway.domain.models import OrderRecord
from debt_gateway.domain.ports import LedgerOracle, TokenRegistry
from debt_gateway.domain.values import EthereumAddress
from debt_gateway.infrastructure.clients.ledger import LedgerClient
from debt_gateway.infrastructure.clients.tokens import StaticTokenRegistry
from debt_gateway.infrastructure.database.repositories import OrderRepository


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_ledger_client() -> LedgerOracle:
    """Provide Ledger oracle client instance"""
    return LedgerClient()


def get_token_registry() -> TokenRegistry:
    return StaticTokenRegistry.from_settings()


def protocol_config(config: Settings = settings) -> ProtocolConfig:
    """Protocol identities and timing from application settings"""
    return ProtocolConfig(
        kernel_version=EthereumAddress(config.kernel_version),
        issuance_version=EthereumAddress(config.issuance_version),
        simple_interest_terms_contract=EthereumAddress(config.simple_interest_terms_contract),
        collateralized_terms_contract=EthereumAddress(config.collateralized_terms_contract),
        decision_engine=EthereumAddress(config.decision_engine_address),
        block_time_estimate_seconds=config.block_time_estimate_seconds,
        salt_decimals=config.salt_decimals,
    )


def get_lifecycle(
    ledger: LedgerOracle = Depends(get_ledger_client),
    registry: TokenRegistry = Depends(get_token_registry),
) -> OrderLifecycle:
    return OrderLifecycle(ledger, registry, protocol_config())


def load_order(repo: OrderRepository, order_id: uuid.UUID) -> OrderRecord:
    record = repo.get(order_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return record


def http_error(exc: DomainException) -> HTTPException:
    """
    Map domain failures onto HTTP statuses:
    oracle 503, validation and economic 422, preconditions 409
    """
    if isinstance(exc, LedgerOracleError):
        status_code = 503
    elif isinstance(exc, (ValidationError, InsufficientCollateralError, InvalidSignatureError)):
        status_code = 422
    elif isinstance(exc, PreconditionError):
        status_code = 409
    else:
        status_code = 400
    return HTTPException(status_code=status_code, detail={"code": exc.code, "message": str(exc)})
