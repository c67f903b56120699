"""Single-slot cache for the active transition model.

The cache holds at most one deserialized model: the newest one in the store.
It never refreshes on its own; every code path that writes a model to the
store must call :meth:`ModelCache.invalidate` after the write commits.
"""

import logging
import threading
from typing import Optional, Tuple

from endless.errors import ModelNotFoundError
from endless.model.transition import TransitionModel
from endless.store import ModelRecord, ModelStore

logger = logging.getLogger(__name__)


class ModelCache:
    """Lock-protected holder of the active model.

    Readers see either no model or a fully constructed one: the slot is only
    ever replaced as a whole under the lock.
    """

    def __init__(self, store: ModelStore):
        """Initialize an empty cache.

        Args:
            store: Blob store the active model is loaded from
        """
        self.store = store
        self._lock = threading.Lock()
        self._slot: Optional[Tuple[ModelRecord, TransitionModel]] = None

    def get_active(self) -> TransitionModel:
        """Return the active model, loading the newest stored one if needed.

        Thread-safe: concurrent misses load under the lock, so only the first
        caller deserializes.

        Returns:
            The active transition model

        Raises:
            ModelNotFoundError: If the store holds no models
            SerializationError: If the newest blob is corrupt
        """
        slot = self._slot
        if slot is not None:
            return slot[1]

        with self._lock:
            # Double-check after acquiring lock
            if self._slot is not None:
                return self._slot[1]

            recent = self.store.list_recent_models(1)
            if not recent:
                raise ModelNotFoundError("No trained model available")

            stored = recent[0]
            model = TransitionModel.from_bytes(stored.data)
            self._slot = (stored.record, model)
            logger.info(
                f"Loaded model {stored.id} ({model.vocabulary_size:,} words, "
                f"{model.num_transitions:,} transitions)"
            )
            return model

    def invalidate(self) -> None:
        """Drop the cached model so the next read reloads from the store."""
        with self._lock:
            if self._slot is not None:
                logger.info(f"Invalidating cached model {self._slot[0].id}")
            self._slot = None

    @property
    def is_loaded(self) -> bool:
        """Check if a model is cached."""
        return self._slot is not None

    @property
    def record(self) -> Optional[ModelRecord]:
        """Id and timestamp of the cached model, if any."""
        slot = self._slot
        return slot[0] if slot is not None else None

    @property
    def model(self) -> Optional[TransitionModel]:
        """Cached model without triggering a load."""
        slot = self._slot
        return slot[1] if slot is not None else None
