"""Merchant and enrollment collaborators consumed by the ledger engine."""

from .directory import MerchantAuthenticationError, MerchantService, public_merchant  # noqa: F401
from .enrollment import Enrollment, EnrollmentService  # noqa: F401
