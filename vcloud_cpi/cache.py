"""
Short-lived in-memory cache for resolved vCloud entities.

Keys are symbolic names (org, vdc, catalog_vapp, catalog_media). The owning
client clears the cache whenever it re-establishes its session.
"""

import logging
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class EntityCache:
    """Lazily populated key -> entity store."""

    def __init__(self):
        self._entries: Dict[str, Any] = {}

    def get(self, key: str, loader: Optional[Callable[[], Any]] = None) -> Any:
        """
        Return the cached entity, resolving it on a miss.

        Args:
            key: Symbolic cache key
            loader: Zero-arg callable resolving the entity on a miss

        Returns:
            Cached or freshly loaded entity; None on a miss without loader
        """
        if key in self._entries:
            logger.debug(f"Cache HIT: {key}")
            return self._entries[key]

        logger.debug(f"Cache MISS: {key}")
        if loader is None:
            return None

        value = loader()
        self._entries[key] = value
        return value

    def clear(self) -> None:
        """Drop every entry; next access resolves live."""
        self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
