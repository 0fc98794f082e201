"""Loyalty ledger engine exports."""

from .applier import (  # noqa: F401
    LedgerApplier,
    LedgerApplyResult,
    record_committed,
    serialize_transaction,
)
from .balances import BalanceSnapshot, BalanceStore  # noqa: F401
from .checkout import (  # noqa: F401
    CheckoutOrchestrator,
    CheckoutResult,
    CheckoutSummary,
    deliver_checkout_notification,
)
from .errors import (  # noqa: F401
    CodeGenerationExhaustedError,
    EnrollmentNotFoundError,
    InsufficientPointsError,
    LedgerError,
    LedgerErrorKind,
    LedgerValidationError,
    MerchantAccessError,
    RuleViolation,
    RuleViolationError,
    RuleViolationKind,
    SessionCodeError,
    SessionCodeNotFoundError,
    SessionCodeUnavailableError,
    StorageFailureError,
)
from .history import TransactionHistory  # noqa: F401
from .rules import (  # noqa: F401
    MerchantLoyaltySettings,
    check_redeem_request,
    compute_points_earned,
    evaluate_redeem_request,
)
from .session_codes import (  # noqa: F401
    IssuedSessionCode,
    SessionCodeIssuer,
    candidate_codes,
    normalize_session_code,
)
