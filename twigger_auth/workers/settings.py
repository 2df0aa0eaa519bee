from arq.connections import RedisSettings

from twigger_auth.config import get_settings

settings = get_settings()


def get_redis_settings() -> RedisSettings:
    return RedisSettings.from_dsn(str(settings.redis_url))
