from sqlalchemy.orm import declarative_base

Base = declarative_base()

# --------------------------------------------------
# Creators & attribution inputs
# --------------------------------------------------
from .creators import Creator  # noqa: F401
from .checkout_sessions import CheckoutSession  # noqa: F401

# --------------------------------------------------
# Orders & commissions
# --------------------------------------------------
from .orders import Order  # noqa: F401
from .commissions import Commission  # noqa: F401

# --------------------------------------------------
# Ledger, payouts, idempotency
# --------------------------------------------------
from .ledger import LedgerEntry  # noqa: F401
from .payout_batches import PayoutBatch, PayoutBatchItem  # noqa: F401
from .idempotency_keys import IdempotencyKey  # noqa: F401

# --------------------------------------------------
# Notifications / audit
# --------------------------------------------------
from .notifications import CreatorNotification, AuditLog  # noqa: F401

# --------------------------------------------------
# Admin
# --------------------------------------------------
from .admin import Admin  # noqa: F401
