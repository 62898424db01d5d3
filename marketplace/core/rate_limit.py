"""
Request rate limiting.

A single slowapi ``Limiter`` keyed by client address applies the default
limit to every route through ``SlowAPIMiddleware``. Gateway callbacks are
exempted where they are declared.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from marketplace.core.config import get_settings

DEFAULT_RATE_LIMIT = "120/minute"

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[DEFAULT_RATE_LIMIT],
    enabled=not get_settings().is_test,
)
