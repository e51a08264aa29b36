"""
SDK payload cache
=================

Each (organization, environment, project) partition of the SDK payload is
cached in Redis under ``{prefix}:{org}:{env}:{project}``. The partition
with an empty project holds features that belong to no project, and is
read by every SDK connection of the environment.

Reads and writes are best effort. ``refresh`` lets Redis errors propagate
so the effect boundary can log and count them.
"""

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, Optional

import redis

from featurerev.config import settings
from featurerev.metrics import PAYLOAD_KEYS_REFRESHED

logger = logging.getLogger("featurerev.payload_cache")

DEFAULT_TTL = 3600


@dataclass(frozen=True)
class PayloadKey:
    organization: str
    environment: str
    project: str = ""


class PayloadCache:
    def __init__(self, client, prefix: str = settings.PAYLOAD_CACHE_PREFIX, ttl: int = DEFAULT_TTL):
        self.client = client
        self.prefix = prefix
        self.ttl = ttl

    def cache_key(self, key: PayloadKey) -> str:
        return f"{self.prefix}:{key.organization}:{key.environment}:{key.project}"

    def get(self, key: PayloadKey) -> Optional[dict]:
        try:
            data = self.client.get(self.cache_key(key))
            return json.loads(data) if data else None
        except Exception as e:
            logger.debug("Payload cache get error: %s", e)
            return None

    def set(self, key: PayloadKey, payload: dict, ttl: Optional[int] = None) -> None:
        try:
            self.client.setex(self.cache_key(key), ttl or self.ttl, json.dumps(payload, default=str))
        except Exception as e:
            logger.debug("Payload cache set error: %s", e)

    def refresh(self, keys: Iterable[PayloadKey]) -> int:
        """Drop the given partitions so the next SDK request rebuilds them."""
        cache_keys = list(dict.fromkeys(self.cache_key(k) for k in keys))
        if not cache_keys:
            return 0
        self.client.delete(*cache_keys)
        PAYLOAD_KEYS_REFRESHED.inc(len(cache_keys))
        logger.debug("Refreshed %d payload partitions", len(cache_keys))
        return len(cache_keys)


@lru_cache()
def get_payload_cache() -> PayloadCache:
    client = redis.from_url(settings.payload_cache_url, decode_responses=True)
    return PayloadCache(client)
