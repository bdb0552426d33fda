from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    enabled=settings.RATE_LIMIT_ENABLED,
)

# applied to endpoints that sign and send transactions
TRANSACTION_LIMIT = settings.RATE_LIMIT
