"""SQLAlchemy models package."""

from .customer import Customer, CustomerMerchant  # noqa: F401
from .ledger import (  # noqa: F401
    LoyaltyBalance,
    LoyaltyTransaction,
    LoyaltyTransactionStatus,
    LoyaltyTransactionType,
)
from .merchant import Merchant, MerchantApiKey, MerchantStatus  # noqa: F401
from .session_code import LoyaltySessionCode, SessionCodeStatus  # noqa: F401
