"""Domain-specific exceptions"""

from decimal import Decimal


class DomainException(Exception):
    """Base exception for domain layer"""

    code = "DOMAIN_ERROR"


# Validation failures: rejected when a value type is constructed


class ValidationError(DomainException):
    """A value failed validation at construction time"""

    code = "INVALID_VALUE"


class InvalidAddressError(ValidationError):
    """Address is not a 20-byte hex string or fails its checksum"""

    code = "INVALID_ADDRESS"


class InvalidAmountError(ValidationError):
    """Token amount is negative or not representable at the token's precision"""

    code = "INVALID_AMOUNT"


class InvalidInterestRateError(ValidationError):
    """Interest rate is negative or too precise for the fixed-point scale"""

    code = "INVALID_INTEREST_RATE"


class InvalidDurationError(ValidationError):
    """Duration amount is not positive or its unit is unknown"""

    code = "INVALID_DURATION"


class TermsParameterOverflowError(ValidationError):
    """A loan term does not fit its slot in the packed terms-contract parameters"""

    code = "TERMS_PARAMETER_OVERFLOW"


class UnknownTokenError(ValidationError):
    """Token symbol or index is not in the registry"""

    code = "UNKNOWN_TOKEN"


# Precondition violations: a required step or field is missing


class PreconditionError(DomainException):
    """Operation attempted before its preconditions hold"""

    code = "PRECONDITION_FAILED"


class AlreadySignedError(PreconditionError):
    """The role has already produced a valid signature"""

    def __init__(self, role: str):
        self.role = role
        self.code = f"ALREADY_SIGNED_BY_{role.upper()}"
        super().__init__(f"The {role} has already signed the loan offer.")


class PricesNotSetError(PreconditionError):
    """Principal and collateral prices are required"""

    code = "PRICES_NOT_SET"

    def __init__(self):
        super().__init__("The prices of the principal and collateral must be set first.")


class CollateralAmountNotSetError(PreconditionError):
    """Collateral amount is required"""

    code = "COLLATERAL_AMOUNT_NOT_SET"

    def __init__(self):
        super().__init__("The collateral amount must be set first.")


class MissingFieldError(PreconditionError):
    """A field needed to derive a hash is absent"""

    code = "MISSING_FIELD"

    def __init__(self, field_name: str):
        self.field_name = field_name
        super().__init__(f"Field '{field_name}' is required before hashing")


class OrderCommittedError(PreconditionError):
    """Negotiable fields cannot change after the debtor has committed"""

    code = "ORDER_COMMITTED"


class ConcurrentUpdateError(PreconditionError):
    """Another request changed the order in a way this request cannot reconcile"""

    code = "CONCURRENT_UPDATE"


class TermsFrozenError(PreconditionError):
    """Terms cannot be amended once any signature exists"""

    code = "TERMS_FROZEN"


class OrderFinalizedError(PreconditionError):
    """Order is filled or cancelled on the ledger"""

    code = "ORDER_FINALIZED"


class OrderNotFillableError(PreconditionError):
    """Order is missing a signature or has expired"""

    code = "ORDER_NOT_FILLABLE"


class SignerMismatchError(PreconditionError):
    """Signer address differs from the party already bound to the role"""

    code = "SIGNER_MISMATCH"


class PriceTokenMismatchError(PreconditionError):
    """Signed price quotes a different token than the order leg"""

    code = "PRICE_TOKEN_MISMATCH"


class PriceSignatureError(PreconditionError):
    """Signed price was not signed by the expected price provider"""

    code = "PRICE_SIGNATURE_INVALID"


# Economic constraint failures


class InsufficientCollateralError(DomainException):
    """Collateral does not satisfy the loan-to-value constraint"""

    code = "INSUFFICIENT_COLLATERAL_AMOUNT"

    def __init__(
        self,
        collateral_amount: Decimal,
        collateral_symbol: str,
        ratio: Decimal | None = None,
        max_ltv: Decimal | None = None,
    ):
        self.collateral_amount = collateral_amount
        self.collateral_symbol = collateral_symbol
        self.ratio = ratio
        self.max_ltv = max_ltv
        super().__init__(
            f"Collateral of {Decimal(collateral_amount).normalize():f} {collateral_symbol} is insufficient "
            f"for the maximum loan-to-value."
        )


# Signer and oracle failures


class InvalidSignatureError(DomainException):
    """Signer returned a signature that does not recover to the requested address"""

    code = "INVALID_SIGNATURE"


class LedgerOracleError(DomainException):
    """Ledger oracle returned an error or is unavailable"""

    code = "LEDGER_UNAVAILABLE"
