"""Transition model components."""

from .transition import (
    DEFAULT_MAX_TOKENS,
    END_TOKEN,
    START_TOKEN,
    TransitionModel,
    generate_sequence,
)
from .training import TrainingStats, add_text_to_model, train_model

__all__ = [
    "DEFAULT_MAX_TOKENS",
    "END_TOKEN",
    "START_TOKEN",
    "TransitionModel",
    "generate_sequence",
    "TrainingStats",
    "add_text_to_model",
    "train_model",
]
