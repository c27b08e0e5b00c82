"""
Cross-run result cache for SiteSight.

Analyses are cached under a key built from file name, byte size and
modification time, so a re-ingested photo with identical bytes skips
inference. The pipeline treats the cache as opaque: it is never the source
of truth for the current run's photo set.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Optional, Union

import redis

from ..models import Analysis, PhotoRecord

logger = logging.getLogger(__name__)


def photo_cache_key(photo: PhotoRecord) -> Optional[str]:
    """
    Cache key for a photo: ``{name}_{size}_{mtime}``

    Returns:
        The key, or None when size or modification time is unknown
    """
    if photo.file_size is None or photo.modified_at is None:
        return None
    return f"{photo.file_name}_{photo.file_size}_{photo.modified_at}"


class AnalysisCache:
    """Key-value store for analyses; ``get`` returns None on a miss."""

    def get(self, key: str) -> Optional[Analysis]:
        raise NotImplementedError

    def put(self, key: str, analysis: Analysis) -> None:
        raise NotImplementedError

    @staticmethod
    def _decode(key: str, data: Optional[dict]) -> Optional[Analysis]:
        """Rebuild a stored analysis; a corrupt entry counts as a miss."""
        if data is None:
            return None
        try:
            return Analysis.from_dict(data)
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Discarding corrupt cache entry {key}: {e}")
            return None


class InMemoryAnalysisCache(AnalysisCache):
    """Process-local cache, also the test double for the others."""

    def __init__(self):
        self._entries: Dict[str, dict] = {}

    def get(self, key: str) -> Optional[Analysis]:
        return self._decode(key, self._entries.get(key))

    def put(self, key: str, analysis: Analysis) -> None:
        self._entries[key] = analysis.to_dict()

    def __len__(self) -> int:
        return len(self._entries)


class JsonFileAnalysisCache(AnalysisCache):
    """
    Cache persisted as one JSON file.

    The file is read once when the cache is created and rewritten on every
    ``put``. A missing or unreadable file starts an empty cache.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._entries: Dict[str, dict] = {}

        if self.path.exists():
            try:
                with open(self.path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    self._entries = data
                logger.info(f"Loaded {len(self._entries)} cached analyses from {self.path}")
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Ignoring unreadable cache file {self.path}: {e}")

    def get(self, key: str) -> Optional[Analysis]:
        return self._decode(key, self._entries.get(key))

    def put(self, key: str, analysis: Analysis) -> None:
        self._entries[key] = analysis.to_dict()
        self.flush()

    def flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(self._entries, f, ensure_ascii=False, indent=2)
        tmp_path.replace(self.path)

    def __len__(self) -> int:
        return len(self._entries)


class RedisAnalysisCache(AnalysisCache):
    """
    Redis-backed cache shared between machines.

    Connection problems are logged and treated as cache misses so that the
    pipeline keeps running without the cache.
    """

    prefix = 'sitesight:analysis:'

    def __init__(self, redis_url: str = "redis://localhost:6379/0",
                 ttl: Optional[int] = None, client: Optional[redis.Redis] = None):
        """
        Initialize the cache

        Args:
            redis_url: Redis connection URL
            ttl: Entry lifetime in seconds; entries never expire when None
            client: Existing client, mainly for tests
        """
        self.ttl = ttl
        self.redis_client = client or redis.from_url(redis_url, decode_responses=True)

    def get(self, key: str) -> Optional[Analysis]:
        try:
            cached = self.redis_client.get(self.prefix + key)
        except redis.RedisError as e:
            logger.warning(f"Cache get error for key {key}: {e}")
            return None
        if not cached:
            return None
        try:
            data = json.loads(cached)
        except ValueError as e:
            logger.warning(f"Discarding corrupt cache entry {key}: {e}")
            return None
        return self._decode(key, data)

    def put(self, key: str, analysis: Analysis) -> None:
        payload = json.dumps(analysis.to_dict(), ensure_ascii=False)
        try:
            if self.ttl:
                self.redis_client.setex(self.prefix + key, self.ttl, payload)
            else:
                self.redis_client.set(self.prefix + key, payload)
        except redis.RedisError as e:
            logger.warning(f"Cache set error for key {key}: {e}")


def create_cache(config: Dict) -> AnalysisCache:
    """
    Build the configured cache backend

    Args:
        config: Full configuration dictionary

    Returns:
        AnalysisCache instance (memory, json or redis)
    """
    cache_config = config.get('cache', {})
    backend = cache_config.get('backend', 'memory')

    if backend == 'memory':
        return InMemoryAnalysisCache()
    if backend == 'json':
        return JsonFileAnalysisCache(cache_config.get('path', '.sitesight_cache.json'))
    if backend == 'redis':
        return RedisAnalysisCache(
            redis_url=cache_config.get('redis_url', 'redis://localhost:6379/0'),
            ttl=cache_config.get('ttl'),
        )
    raise ValueError(f"Unknown cache backend: {backend}")
