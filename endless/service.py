"""Training operations that commit models to the store.

Both operations follow the same order: build the model, write it to the
store, and only after the write returns invalidate the cache.
"""

import logging
from dataclasses import dataclass

from endless.cache import ModelCache
from endless.errors import InputError
from endless.model.training import TrainingStats, add_text_to_model
from endless.model.transition import TransitionModel
from endless.store import ModelRecord, ModelStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrainingResult:
    """Outcome of a committed training request."""

    record: ModelRecord
    stats: TrainingStats
    vocabulary_size: int
    num_transitions: int

    def to_dict(self) -> dict:
        return {
            "id": self.record.id,
            "created_at": self.record.created_at.isoformat(),
            "sentences": self.stats.sentences,
            "tokens": self.stats.tokens,
            "vocabulary_size": self.vocabulary_size,
            "transitions": self.num_transitions,
        }


def _require_text(text: str) -> None:
    if not text or not text.strip():
        raise InputError("Training text is empty")


def train_new_model(store: ModelStore, cache: ModelCache, text: str) -> TrainingResult:
    """Train a fresh model on ``text`` and store it as the newest model.

    Raises:
        InputError: If ``text`` is empty or whitespace
    """
    _require_text(text)
    model = TransitionModel()
    stats = add_text_to_model(model, text)
    if stats.sentences == 0:
        raise InputError("Training text contains no usable sentences")

    record = store.save_model(model.to_bytes())
    cache.invalidate()

    logger.info(f"Trained model {record.id}: {stats.sentences} sentences, {model.vocabulary_size} words")
    return TrainingResult(record, stats, model.vocabulary_size, model.num_transitions)


def retrain_model(store: ModelStore, cache: ModelCache, model_id: int, text: str) -> TrainingResult:
    """Add ``text`` to stored model ``model_id`` (read-modify-write).

    The whole sequence runs under ``store.write_lock`` so concurrent
    retrains of one model each see the other's counts.

    Raises:
        InputError: If ``text`` is empty or whitespace
        ModelNotFoundError: If ``model_id`` does not exist; the cache is
            left untouched
        SerializationError: If the stored blob is corrupt
    """
    _require_text(text)
    with store.write_lock:
        model = TransitionModel.from_bytes(store.get_model(model_id))
        stats = add_text_to_model(model, text)

        record = store.update_model(model_id, model.to_bytes())
        cache.invalidate()

    logger.info(f"Retrained model {record.id}: +{stats.sentences} sentences, {model.vocabulary_size} words")
    return TrainingResult(record, stats, model.vocabulary_size, model.num_transitions)
