"""Rate limiting configuration using slowapi."""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Keyed by client address; limits are declared per endpoint
limiter = Limiter(key_func=get_remote_address)

# Test/ops endpoints can trigger paid provider calls
OPERATIONS_LIMIT = "60/minute"
TEST_FALLBACK_LIMIT = "10/minute"
ADMIN_LIMIT = "30/minute"
