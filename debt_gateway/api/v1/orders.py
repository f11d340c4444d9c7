"""Debt order endpoints: create, inspect, sign, fill and cancel"""

import logging
import time
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from debt_gateway.api.dependencies import get_lifecycle, get_request_id, http_error, load_order
from debt_gateway.api.v1.schemas import (
    FillRequest,
    LoanRequestCreate,
    OrderListResponse,
    OrderResponse,
    OrderSummary,
    PartyRequest,
    RoleName,
    SignatureAttach,
    SignatureResponse,
    SignatureSchema,
    SignedPriceSchema,
    SigningHashResponse,
    SubmissionResponse,
)
from debt_gateway.domain.exceptions import DomainException, InvalidAddressError, InvalidSignatureError
from debt_gateway.domain.interchange import to_interchange
from debt_gateway.domain.lifecycle import LoanRequestParams, OrderLifecycle, commitment_hash
from debt_gateway.domain.models import ECDSASignature, OrderRecord, OrderStatus, Role, SignedPrice
from debt_gateway.domain.values import EthereumAddress, TimeInterval
from debt_gateway.infrastructure.clients.signer import PresignedSigner
from debt_gateway.infrastructure.database.repositories import OrderRepository
from debt_gateway.infrastructure.database.session import get_db
from debt_gateway.infrastructure.observability.logging import log_order_event, log_signature_event
from debt_gateway.infrastructure.observability.metrics import record_order_created, record_signature

router = APIRouter()


def to_signature(schema: SignatureSchema) -> ECDSASignature:
    return ECDSASignature(v=schema.v, r=schema.r, s=schema.s)


def to_signed_price(schema: SignedPriceSchema) -> SignedPrice:
    return SignedPrice(
        token_address=EthereumAddress(schema.token_address),
        token_price=schema.token_price,
        timestamp=schema.timestamp,
        provider_signature=to_signature(schema.signature),
    )


def optional_address(value: Optional[str]) -> Optional[EthereumAddress]:
    return EthereumAddress(value) if value else None


def order_response(
    record: OrderRecord, lifecycle: OrderLifecycle, status: Optional[OrderStatus] = None
) -> OrderResponse:
    debt_order_hash = None
    if record.debtor is not None:
        debt_order_hash = "0x" + lifecycle.debt_order_hash(record).hex()
    return OrderResponse(
        order_id=str(record.id),
        kind=record.kind.value,
        status=(status or lifecycle.local_status(record)).value,
        commitment_hash="0x" + commitment_hash(record).hex(),
        debt_order_hash=debt_order_hash,
        order=to_interchange(record),
    )


async def attach_presigned(
    lifecycle: OrderLifecycle,
    record: OrderRecord,
    role: Role,
    signer: Optional[EthereumAddress],
    signature: ECDSASignature,
    request_id: str,
) -> str:
    """Attach a client-made signature, recording the outcome; returns it"""
    outcome = "already_signed" if lifecycle.is_signed_by(record, role) else "attached"
    presigned = PresignedSigner(signature)
    try:
        if role is Role.DEBTOR:
            entry = await lifecycle.sign_as_debtor(record, presigned, signer)
        elif role is Role.CREDITOR:
            entry = await lifecycle.sign_as_creditor(record, presigned, signer)
        else:
            entry = await lifecycle.sign_as_underwriter(record, presigned, signer)
    except InvalidSignatureError as e:
        record_signature(role.value, "rejected")
        log_signature_event(request_id, str(record.id), role.value, "rejected", signer and signer.value, str(e))
        raise

    record_signature(role.value, outcome)
    log_signature_event(request_id, str(record.id), role.value, outcome, entry.signer_address.value)
    return outcome


@router.post("/orders", response_model=OrderResponse, status_code=201)
async def create_order(
    request_body: LoanRequestCreate,
    request: Request,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """
    Create a loan request (plain debt order).

    The debtor signs the returned debt order hash and posts it to
    /v1/orders/{order_id}/signatures.
    """
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        params = LoanRequestParams(
            principal_amount=request_body.principal_amount,
            principal_token=request_body.principal_token,
            collateral_amount=request_body.collateral_amount,
            collateral_token=request_body.collateral_token,
            interest_rate=request_body.interest_rate,
            term_length=TimeInterval(request_body.term_length, request_body.amortization_unit),
            expires_in=TimeInterval(request_body.expires_in, request_body.expires_in_unit),
            debtor=EthereumAddress(request_body.debtor),
            underwriter=optional_address(request_body.underwriter),
            debtor_fee=request_body.debtor_fee,
            creditor_fee=request_body.creditor_fee,
            relayer=optional_address(request_body.relayer),
            relayer_fee=request_body.relayer_fee,
            underwriter_fee=request_body.underwriter_fee,
            underwriter_risk_rating=request_body.underwriter_risk_rating,
            grace_period_in_days=request_body.grace_period_in_days,
        )
        record = await lifecycle.create_loan_request(params)
        OrderRepository(db).save(record)
        db.commit()

    except DomainException as e:
        db.rollback()
        logging.warning(f"Order rejected: {e}", extra={"request_id": request_id, "code": e.code})
        raise http_error(e)

    duration_ms = (time.time() - start_time) * 1000
    record_order_created(record.kind.value)
    log_order_event(request_id, str(record.id), "created", kind=record.kind.value, duration_ms=duration_ms)
    return order_response(record, lifecycle)


@router.get("/orders", response_model=OrderListResponse)
def list_orders(
    debtor: str = Query(..., description="Debtor address"),
    db: Session = Depends(get_db),
):
    """Recent orders naming `debtor`"""
    try:
        address = EthereumAddress(debtor)
    except InvalidAddressError as e:
        raise http_error(e)

    rows = OrderRepository(db).get_orders_by_debtor(address, limit=20)
    return OrderListResponse(
        debtor=address.value,
        orders=[
            OrderSummary(
                order_id=str(row.id),
                kind=row.kind,
                ledger_state=row.ledger_state,
                commitment_hash=row.commitment_hash,
                created_at=row.created_at.isoformat(),
            )
            for row in rows
        ],
    )


@router.get("/orders/{order_id}", response_model=OrderResponse)
def get_order(
    order_id: uuid.UUID,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    record = load_order(OrderRepository(db), order_id)
    return order_response(record, lifecycle)


@router.get("/orders/{order_id}/status", response_model=OrderResponse)
async def get_order_status(
    order_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """Refresh fill/cancel state from the ledger and report the observed status"""
    repo = OrderRepository(db)
    record = load_order(repo, order_id)
    try:
        status = await lifecycle.observe_status(record)
        repo.save(record)
        db.commit()
    except DomainException as e:
        db.rollback()
        logging.error(f"Status check failed: {e}", extra={"request_id": get_request_id(request)})
        raise http_error(e)
    return order_response(record, lifecycle, status)


@router.get("/orders/{order_id}/signing-hash", response_model=SigningHashResponse)
def get_signing_hash(
    order_id: uuid.UUID,
    role: RoleName = Query(...),
    address: Optional[str] = Query(None, description="Signer address if not yet bound"),
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """Hash a party must sign for `role`, so wallets can sign client-side"""
    record = load_order(OrderRepository(db), order_id)
    try:
        payload = lifecycle.signing_hash(record, Role(role), optional_address(address))
    except DomainException as e:
        raise http_error(e)
    return SigningHashResponse(order_id=str(record.id), role=role, signing_hash="0x" + payload.hex())


@router.post("/orders/{order_id}/signatures", response_model=SignatureResponse)
async def attach_order_signature(
    order_id: uuid.UUID,
    request_body: SignatureAttach,
    request: Request,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """Attach a party's signature; idempotent if the role is already validly signed"""
    request_id = get_request_id(request)
    repo = OrderRepository(db)
    record = load_order(repo, order_id)
    role = Role(request_body.role)

    try:
        signer = EthereumAddress(request_body.signer)
        outcome = await attach_presigned(
            lifecycle, record, role, signer, to_signature(request_body.signature), request_id
        )
        repo.save(record)
        db.commit()
    except DomainException as e:
        db.rollback()
        logging.warning(f"Signature rejected: {e}", extra={"request_id": request_id, "code": e.code})
        raise http_error(e)

    return SignatureResponse(
        order_id=str(record.id),
        role=role.value,
        signer=signer.value,
        outcome=outcome,
        status=lifecycle.local_status(record).value,
    )


@router.post("/orders/{order_id}/fill", response_model=SubmissionResponse)
async def fill_order(
    order_id: uuid.UUID,
    request_body: FillRequest,
    request: Request,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """
    Fill a debtor-signed order as creditor.

    Flow:
    1. Refresh ledger state and check the order is fillable
    2. Attach the creditor's signature over the debt order hash
    3. Submit the fill through the ledger oracle
    """
    start_time = time.time()
    request_id = get_request_id(request)
    repo = OrderRepository(db)
    record = load_order(repo, order_id)

    try:
        outcome = "already_signed" if lifecycle.is_signed_by(record, Role.CREDITOR) else "attached"
        receipt = await lifecycle.fill(
            record,
            PresignedSigner(to_signature(request_body.signature)),
            optional_address(request_body.creditor),
        )
        repo.save(record)
        db.commit()
    except DomainException as e:
        db.rollback()
        logging.warning(f"Fill rejected: {e}", extra={"request_id": request_id, "code": e.code})
        raise http_error(e)

    record_signature(Role.CREDITOR.value, outcome)
    status = lifecycle.local_status(record)
    duration_ms = (time.time() - start_time) * 1000
    log_order_event(request_id, str(record.id), "fill_submitted", status=status.value, receipt=receipt, duration_ms=duration_ms)
    return SubmissionResponse(order_id=str(record.id), status=status.value, transaction_hash=receipt)


@router.post("/orders/{order_id}/cancel", response_model=SubmissionResponse)
async def cancel_order(
    order_id: uuid.UUID,
    request_body: PartyRequest,
    request: Request,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """Cancel as debtor; cancelling an already-cancelled order is a no-op"""
    request_id = get_request_id(request)
    repo = OrderRepository(db)
    record = load_order(repo, order_id)

    try:
        receipt = await lifecycle.cancel(record, optional_address(request_body.address))
        repo.save(record)
        db.commit()
    except DomainException as e:
        db.rollback()
        logging.warning(f"Cancel rejected: {e}", extra={"request_id": request_id, "code": e.code})
        raise http_error(e)

    event = "cancel_submitted" if receipt else "cancel_noop"
    status = lifecycle.local_status(record)
    log_order_event(request_id, str(record.id), event, status=status.value, receipt=receipt)
    return SubmissionResponse(order_id=str(record.id), status=status.value, transaction_hash=receipt)
