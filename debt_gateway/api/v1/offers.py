"""Loan offer endpoints: create, negotiate collateral, debtor commitment and acceptance"""

import logging
import time
import uuid

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from debt_gateway.api.dependencies import get_lifecycle, get_request_id, get_token_registry, http_error, load_order
from debt_gateway.api.v1.orders import attach_presigned, optional_address, order_response, to_signature, to_signed_price
from debt_gateway.api.v1.schemas import (
    CollateralRequest,
    DebtorSignatureRequest,
    LtvCheckRequest,
    LtvCheckResponse,
    OfferCreate,
    OrderResponse,
    PartyRequest,
    SignatureResponse,
    SubmissionResponse,
)
from debt_gateway.domain import collateral
from debt_gateway.domain.exceptions import AlreadySignedError, DomainException, InsufficientCollateralError
from debt_gateway.domain.lifecycle import OfferParams, OrderLifecycle
from debt_gateway.domain.models import OrderKind, Role
from debt_gateway.domain.ports import TokenRegistry
from debt_gateway.domain.values import EthereumAddress, TimeInterval, TokenAmount
from debt_gateway.infrastructure.database.repositories import OrderRepository
from debt_gateway.infrastructure.database.session import get_db
from debt_gateway.infrastructure.observability.logging import log_order_event
from debt_gateway.infrastructure.observability.metrics import record_collateral_check, record_order_created

router = APIRouter()


@router.post("/offers", response_model=OrderResponse, status_code=201)
async def create_offer(
    request_body: OfferCreate,
    request: Request,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """
    Create a loan offer.

    The creditor signs the returned commitment scope via
    /v1/orders/{order_id}/signatures before the debtor negotiates collateral.
    """
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        params = OfferParams(
            principal_amount=request_body.principal_amount,
            principal_token=request_body.principal_token,
            collateral_token=request_body.collateral_token,
            interest_rate=request_body.interest_rate,
            term_length=TimeInterval(request_body.term_length, request_body.amortization_unit),
            expires_in=TimeInterval(request_body.expires_in, request_body.expires_in_unit),
            ltv=request_body.ltv,
            price_provider=EthereumAddress(request_body.price_provider),
            debtor_fee=request_body.debtor_fee,
            creditor_fee=request_body.creditor_fee,
            relayer=optional_address(request_body.relayer),
            relayer_fee=request_body.relayer_fee,
            grace_period_in_days=request_body.grace_period_in_days,
        )
        record = await lifecycle.create_offer(params, OrderKind(request_body.kind))
        OrderRepository(db).save(record)
        db.commit()

    except DomainException as e:
        db.rollback()
        logging.warning(f"Offer rejected: {e}", extra={"request_id": request_id, "code": e.code})
        raise http_error(e)

    duration_ms = (time.time() - start_time) * 1000
    record_order_created(record.kind.value)
    log_order_event(request_id, str(record.id), "created", kind=record.kind.value, duration_ms=duration_ms)
    return order_response(record, lifecycle)


@router.post("/offers/{order_id}/collateral", response_model=OrderResponse)
def set_offer_collateral(
    order_id: uuid.UUID,
    request_body: CollateralRequest,
    request: Request,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """Debtor-chosen collateral for a max-LTV offer; checked against prices at signing"""
    repo = OrderRepository(db)
    record = load_order(repo, order_id)
    try:
        lifecycle.set_collateral_amount(record, request_body.amount)
        repo.save(record)
        db.commit()
    except DomainException as e:
        db.rollback()
        logging.warning(f"Collateral rejected: {e}", extra={"request_id": get_request_id(request), "code": e.code})
        raise http_error(e)
    return order_response(record, lifecycle)


@router.post("/offers/{order_id}/debtor-signature", response_model=SignatureResponse)
async def sign_offer_as_debtor(
    order_id: uuid.UUID,
    request_body: DebtorSignatureRequest,
    request: Request,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """
    Commit the debtor to an offer.

    Flow:
    1. Apply the signed prices (verified against the offer's price provider)
    2. Optionally set the collateral amount
    3. Check collateral sufficiency and attach the debtor signature
    """
    request_id = get_request_id(request)
    repo = OrderRepository(db)
    record = load_order(repo, order_id)

    try:
        if lifecycle.is_signed_by(record, Role.DEBTOR):
            raise AlreadySignedError(Role.DEBTOR.value)
        lifecycle.set_principal_price(record, to_signed_price(request_body.principal_price))
        lifecycle.set_collateral_price(record, to_signed_price(request_body.collateral_price))
        if request_body.collateral_amount is not None:
            lifecycle.set_collateral_amount(record, request_body.collateral_amount)
        debtor = optional_address(request_body.debtor)
        try:
            outcome = await attach_presigned(
                lifecycle, record, Role.DEBTOR, debtor, to_signature(request_body.signature), request_id
            )
        except InsufficientCollateralError:
            record_collateral_check(False)
            raise
        record_collateral_check(True)
        repo.save(record)
        db.commit()
    except DomainException as e:
        db.rollback()
        logging.warning(f"Debtor signature rejected: {e}", extra={"request_id": request_id, "code": e.code})
        raise http_error(e)

    return SignatureResponse(
        order_id=str(record.id),
        role=Role.DEBTOR.value,
        signer=record.debtor.value,
        outcome=outcome,
        status=lifecycle.local_status(record).value,
    )


@router.post("/offers/{order_id}/accept", response_model=SubmissionResponse)
async def accept_offer(
    order_id: uuid.UUID,
    request_body: PartyRequest,
    request: Request,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """Submit a doubly-signed offer as its debtor"""
    start_time = time.time()
    request_id = get_request_id(request)
    repo = OrderRepository(db)
    record = load_order(repo, order_id)

    try:
        receipt = await lifecycle.accept_offer(record, optional_address(request_body.address))
        repo.save(record)
        db.commit()
    except DomainException as e:
        db.rollback()
        logging.warning(f"Accept rejected: {e}", extra={"request_id": request_id, "code": e.code})
        raise http_error(e)

    status = lifecycle.local_status(record)
    duration_ms = (time.time() - start_time) * 1000
    log_order_event(request_id, str(record.id), "fill_submitted", status=status.value, receipt=receipt, duration_ms=duration_ms)
    return SubmissionResponse(order_id=str(record.id), status=status.value, transaction_hash=receipt)


@router.post("/ltv/check", response_model=LtvCheckResponse)
def check_ltv(
    request_body: LtvCheckRequest,
    registry: TokenRegistry = Depends(get_token_registry),
):
    """Stateless collateral sufficiency evaluation; price signatures are not verified"""
    required = None
    try:
        principal_price = to_signed_price(request_body.principal_price) if request_body.principal_price else None
        collateral_price = to_signed_price(request_body.collateral_price) if request_body.collateral_price else None
        principal_info = registry.get_token(request_body.principal_token)
        collateral_info = registry.get_token(request_body.collateral_token)
        principal = TokenAmount.from_decimal(
            request_body.principal_amount, principal_info.symbol, principal_info.decimals
        )
        required = collateral.required_collateral(
            principal,
            principal_price,
            collateral_price,
            request_body.max_ltv,
            collateral_info.symbol,
            collateral_info.decimals,
        )
        ratio = collateral.assert_sufficient(
            principal,
            request_body.collateral_amount,
            collateral_info.symbol,
            principal_price,
            collateral_price,
            request_body.max_ltv,
        )
    except InsufficientCollateralError as e:
        record_collateral_check(False)
        return LtvCheckResponse(sufficient=False, ratio=e.ratio, required_collateral=required)
    except DomainException as e:
        raise http_error(e)

    record_collateral_check(True)
    return LtvCheckResponse(sufficient=True, ratio=ratio, required_collateral=required)
