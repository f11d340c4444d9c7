"""Pydantic schemas for API request/response validation"""

from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

RoleName = Literal["debtor", "creditor", "underwriter"]


class SignatureSchema(BaseModel):
    """ECDSA signature triple; r and s are 0x-prefixed 32-byte hex"""

    v: int = Field(..., ge=0)
    r: str = Field(..., pattern=r"^0x[0-9a-fA-F]{64}$")
    s: str = Field(..., pattern=r"^0x[0-9a-fA-F]{64}$")


class SignedPriceSchema(BaseModel):
    """Price attestation signed by the offer's price provider"""

    token_address: str
    token_price: Decimal = Field(..., ge=0, description="USD per whole token")
    timestamp: int = Field(..., ge=0)
    signature: SignatureSchema


class LoanRequestCreate(BaseModel):
    """Request body for POST /v1/orders"""

    principal_amount: Decimal = Field(..., gt=0)
    principal_token: str = Field(..., min_length=1)
    collateral_amount: Decimal = Field(Decimal(0), ge=0)
    collateral_token: str = Field(..., min_length=1)
    interest_rate: Decimal = Field(..., ge=0, description="Percent, up to 4 decimal places")
    term_length: int = Field(..., gt=0)
    amortization_unit: str = Field(..., description="hours, days, months or years")
    expires_in: int = Field(..., gt=0)
    expires_in_unit: str = "hours"
    debtor: str
    underwriter: Optional[str] = None
    debtor_fee: Optional[Decimal] = None
    creditor_fee: Optional[Decimal] = None
    relayer: Optional[str] = None
    relayer_fee: Optional[Decimal] = None
    underwriter_fee: Optional[Decimal] = None
    underwriter_risk_rating: int = Field(0, ge=0)
    grace_period_in_days: int = Field(0, ge=0)


class OfferCreate(BaseModel):
    """Request body for POST /v1/offers"""

    kind: Literal["max_ltv_offer", "ltv_offer"] = "max_ltv_offer"
    principal_amount: Decimal = Field(..., gt=0)
    principal_token: str = Field(..., min_length=1)
    collateral_token: str = Field(..., min_length=1)
    interest_rate: Decimal = Field(..., ge=0)
    term_length: int = Field(..., gt=0)
    amortization_unit: str
    expires_in: int = Field(..., gt=0)
    expires_in_unit: str = "hours"
    ltv: Decimal = Field(..., gt=0, le=100, description="Loan-to-value percent")
    price_provider: str
    debtor_fee: Optional[Decimal] = None
    creditor_fee: Optional[Decimal] = None
    relayer: Optional[str] = None
    relayer_fee: Optional[Decimal] = None
    grace_period_in_days: int = Field(0, ge=0)


class SignatureAttach(BaseModel):
    """Request body for POST /v1/orders/{order_id}/signatures"""

    role: RoleName
    signer: str
    signature: SignatureSchema


class FillRequest(BaseModel):
    """Creditor countersignature; the acting address falls back to the ledger's current user"""

    signature: SignatureSchema
    creditor: Optional[str] = None


class PartyRequest(BaseModel):
    """Optional acting address for cancel and accept"""

    address: Optional[str] = None


class CollateralRequest(BaseModel):
    amount: Decimal = Field(..., description="Collateral in whole tokens")


class DebtorSignatureRequest(BaseModel):
    """Debtor commitment to an offer; prices are used for the check and never stored"""

    signature: SignatureSchema
    principal_price: SignedPriceSchema
    collateral_price: SignedPriceSchema
    debtor: Optional[str] = None
    collateral_amount: Optional[Decimal] = None


class LtvCheckRequest(BaseModel):
    """Request body for POST /v1/ltv/check"""

    principal_amount: Decimal = Field(..., gt=0)
    principal_token: str
    collateral_amount: Optional[Decimal] = None
    collateral_token: str
    principal_price: Optional[SignedPriceSchema] = None
    collateral_price: Optional[SignedPriceSchema] = None
    max_ltv: Decimal = Field(..., gt=0)


class OrderResponse(BaseModel):
    """Order document with its derived hashes and lifecycle status"""

    order_id: str
    kind: str
    status: str
    commitment_hash: str
    debt_order_hash: Optional[str] = None
    order: Dict[str, Any]


class SignatureResponse(BaseModel):
    order_id: str
    role: str
    signer: str
    outcome: str
    status: str


class SigningHashResponse(BaseModel):
    order_id: str
    role: str
    signing_hash: str


class SubmissionResponse(BaseModel):
    """Response for fill, cancel and accept"""

    order_id: str
    status: str
    transaction_hash: Optional[str] = None


class OrderSummary(BaseModel):
    order_id: str
    kind: str
    ledger_state: str
    commitment_hash: str
    created_at: str


class OrderListResponse(BaseModel):
    """Response for GET /v1/orders"""

    debtor: str
    orders: List[OrderSummary]


class LtvCheckResponse(BaseModel):
    sufficient: bool
    ratio: Optional[Decimal] = None
    required_collateral: Optional[Decimal] = None
