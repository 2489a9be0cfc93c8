import redis

from config import Config


def build_redis_client(url=None):
    """
    Build the remote backend client, or None when no endpoint is configured.

    Connection is lazy: nothing touches the network until DataStore probes it.
    """
    url = url if url is not None else Config.REDIS_URL
    if not url:
        return None

    return redis.Redis.from_url(
        url,
        decode_responses=True,
        socket_timeout=Config.REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=Config.REDIS_CONNECT_TIMEOUT,
    )
