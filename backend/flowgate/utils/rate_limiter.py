# /flowgate/utils/rate_limiter.py

from slowapi import Limiter
from flowgate.utils.request_utils import get_remote_address
from flowgate.config.settings import settings

# Shared limiter instance; main.py registers it on the app and the Flow
# endpoint applies its own per-minute limit on top of the default.

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
    enabled=settings.environment != "test",
)
