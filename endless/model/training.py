"""Training helpers for the transition model."""

import logging
from dataclasses import dataclass
from typing import Optional

from endless.data.text import iter_sentences
from endless.model.transition import SENTINEL_TOKENS, TransitionModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrainingStats:
    """Summary of one training pass."""

    sentences: int
    tokens: int
    dropped_tokens: int


def add_text_to_model(model: TransitionModel, text: str) -> TrainingStats:
    """Add every sentence of ``text`` to ``model``.

    Counts are only ever incremented, so calling this repeatedly on the same
    model accumulates training. Words that collide with the sentinel tokens
    are dropped.

    Args:
        model: Model to update in place
        text: Raw training text

    Returns:
        Statistics about what was added
    """
    sentences = 0
    tokens = 0
    dropped = 0
    for sentence in iter_sentences(text):
        words = [word for word in sentence if word not in SENTINEL_TOKENS]
        dropped += len(sentence) - len(words)
        if not words:
            continue
        model.add_sequence(words)
        sentences += 1
        tokens += len(words)

    if dropped:
        logger.warning(f"Dropped {dropped} sentinel-like token(s) from training text")
    logger.debug(f"Added {sentences} sentences ({tokens} tokens) to model")
    return TrainingStats(sentences=sentences, tokens=tokens, dropped_tokens=dropped)


def train_model(text: str, model: Optional[TransitionModel] = None) -> TransitionModel:
    """Train ``model`` (or a new empty model) on ``text`` and return it.

    Empty text is a no-op.
    """
    if model is None:
        model = TransitionModel()
    add_text_to_model(model, text)
    return model
