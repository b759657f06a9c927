from redis import Redis

from .config import settings

# None when REDIS_URL is unset: locks fall back to process-local ones and
# events are only logged.
redis_client: Redis | None = (
    Redis.from_url(settings.redis_url, socket_timeout=2.0)
    if settings.redis_url
    else None
)
