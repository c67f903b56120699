"""First-order word transition model.

The model maps a context (the last ``order`` tokens, here always one) to the
observed next tokens and their occurrence counts. Every trained sequence is
wrapped in START/END sentinels, so any context reached while generating from
START has at least one outgoing transition.

Sampling is proportional to counts. Candidates are always considered in
sorted order, which makes deterministic sampling depend only on the counts
and the caller's generator state, never on the order text was trained in.
"""

import json
import logging
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from endless.errors import GenerationError, SerializationError

logger = logging.getLogger(__name__)

START_TOKEN = "<s>"
END_TOKEN = "</s>"
SENTINEL_TOKENS = frozenset({START_TOKEN, END_TOKEN})

DEFAULT_MAX_TOKENS = 1000

_FORMAT_NAME = "endless-transition-model"
_FORMAT_VERSION = 1

Context = Tuple[str, ...]


class TransitionModel:
    """Weighted next-token counts keyed by the previous token.

    The model is mutable only through :meth:`add_sequence`. Once handed to
    the cache or the story generator it is treated as read-only and may be
    shared between threads.
    """

    order: int = 1

    def __init__(self) -> None:
        self._transitions: Dict[Context, Dict[str, int]] = {}
        # Lazily built (sorted candidates, cumulative counts) per context
        self._tables: Dict[Context, Tuple[Tuple[str, ...], np.ndarray]] = {}
        self._alphabet: Optional[Tuple[str, ...]] = None

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def add_sequence(self, tokens: Sequence[str]) -> None:
        """Count every consecutive token pair of START + tokens + END.

        Args:
            tokens: Words of one sentence, without sentinels
        """
        sequence = [START_TOKEN, *tokens, END_TOKEN]
        for i in range(1, len(sequence)):
            context = self._context_key(sequence[:i])
            counts = self._transitions.setdefault(context, {})
            counts[sequence[i]] = counts.get(sequence[i], 0) + 1

        self._tables.clear()
        self._alphabet = None

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def sample(self, context: Sequence[str], rng: Optional[np.random.Generator] = None) -> str:
        """Sample the next token stochastically.

        Args:
            context: Recent tokens; only the last ``order`` are used
            rng: Optional generator; a freshly seeded one is used when omitted

        Returns:
            The sampled token
        """
        if rng is None:
            rng = np.random.default_rng()
        return self._choose(self._context_key(context), rng)

    def sample_deterministic(self, context: Sequence[str], rng: np.random.Generator) -> str:
        """Sample the next token using a caller-owned seeded generator.

        Repeated calls with a generator in the same state against an equal
        model always return the same token and advance the generator equally.
        """
        return self._choose(self._context_key(context), rng)

    def _choose(self, context: Context, rng: np.random.Generator) -> str:
        table = self._table(context)
        if table is None:
            # Unseen context: uniform choice over everything ever emitted
            alphabet = self.alphabet
            if not alphabet:
                raise GenerationError("Cannot sample from an empty model")
            logger.debug(f"Unseen context {context!r}, falling back to alphabet")
            return alphabet[int(rng.integers(len(alphabet)))]

        candidates, cumulative = table
        r = int(rng.integers(int(cumulative[-1])))
        index = int(np.searchsorted(cumulative, r, side="right"))
        return candidates[index]

    def _table(self, context: Context) -> Optional[Tuple[Tuple[str, ...], np.ndarray]]:
        table = self._tables.get(context)
        if table is None:
            counts = self._transitions.get(context)
            if not counts:
                return None
            candidates = tuple(sorted(counts))
            cumulative = np.cumsum(
                np.fromiter((counts[c] for c in candidates), dtype=np.int64, count=len(candidates))
            )
            table = (candidates, cumulative)
            self._tables[context] = table
        return table

    def _context_key(self, context: Sequence[str]) -> Context:
        if len(context) < self.order:
            raise GenerationError(
                f"Context needs at least {self.order} token(s), got {len(context)}"
            )
        return tuple(context[len(context) - self.order:])

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def alphabet(self) -> Tuple[str, ...]:
        """Sorted tuple of every token that appears as a next token."""
        if self._alphabet is None:
            tokens = set()
            for counts in self._transitions.values():
                tokens.update(counts)
            self._alphabet = tuple(sorted(tokens))
        return self._alphabet

    @property
    def vocabulary_size(self) -> int:
        """Number of distinct words, sentinels excluded."""
        return sum(1 for token in self.alphabet if token not in SENTINEL_TOKENS)

    @property
    def num_contexts(self) -> int:
        return len(self._transitions)

    @property
    def num_transitions(self) -> int:
        return sum(len(counts) for counts in self._transitions.values())

    @property
    def total_count(self) -> int:
        return sum(sum(counts.values()) for counts in self._transitions.values())

    def is_empty(self) -> bool:
        return not self._transitions

    def next_counts(self, context: Sequence[str]) -> Dict[str, int]:
        """Return a copy of the next-token counts for ``context``."""
        return dict(self._transitions.get(self._context_key(context), {}))

    def transitions(self) -> Iterator[Tuple[Context, str, int]]:
        """Iterate over ``(context, next_token, count)`` triples."""
        for context, counts in self._transitions.items():
            for token, count in counts.items():
                yield context, token, count

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TransitionModel):
            return NotImplemented
        return self.order == other.order and self._transitions == other._transitions

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return (
            f"TransitionModel(contexts={self.num_contexts}, "
            f"transitions={self.num_transitions}, vocabulary={self.vocabulary_size})"
        )

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_bytes(self) -> bytes:
        """Serialize the model as canonical UTF-8 JSON.

        Equal models always serialize to identical bytes.
        """
        payload = {
            "format": _FORMAT_NAME,
            "version": _FORMAT_VERSION,
            "order": self.order,
            "transitions": {
                " ".join(context): counts for context, counts in self._transitions.items()
            },
        }
        return json.dumps(payload, sort_keys=True, ensure_ascii=False, separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "TransitionModel":
        """Rebuild a model from :meth:`to_bytes` output.

        Raises:
            SerializationError: If ``data`` is not a valid serialized model
        """
        try:
            payload = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise SerializationError(f"Model blob is not valid UTF-8 JSON: {e}") from e

        if not isinstance(payload, dict) or payload.get("format") != _FORMAT_NAME:
            raise SerializationError("Model blob has an unknown format")
        if payload.get("version") != _FORMAT_VERSION:
            raise SerializationError(f"Unsupported model version: {payload.get('version')!r}")
        if payload.get("order") != cls.order:
            raise SerializationError(f"Unsupported model order: {payload.get('order')!r}")

        raw = payload.get("transitions")
        if not isinstance(raw, dict):
            raise SerializationError("Model blob is missing its transitions")

        model = cls()
        for key, counts in raw.items():
            context = tuple(key.split(" "))
            if len(context) != cls.order or not isinstance(counts, dict):
                raise SerializationError(f"Malformed context entry: {key!r}")
            for token, count in counts.items():
                if type(count) is not int or count <= 0:
                    raise SerializationError(f"Invalid count {count!r} for {key!r} -> {token!r}")
            model._transitions[context] = dict(counts)
        return model


def generate_sequence(
    model: TransitionModel,
    rng: np.random.Generator,
    max_tokens: int = DEFAULT_MAX_TOKENS,
) -> str:
    """Walk the model from START until END and return the words joined by spaces.

    Args:
        model: Trained transition model
        rng: Seeded generator, advanced in place
        max_tokens: Maximum number of words before giving up

    Returns:
        The generated sentence without sentinels

    Raises:
        GenerationError: If the model is empty or no END is reached within
            ``max_tokens`` words
    """
    tokens: List[str] = [START_TOKEN]
    while True:
        token = model.sample_deterministic(tokens, rng)
        if token == END_TOKEN:
            break
        if len(tokens) > max_tokens:
            raise GenerationError(f"No end of sentence after {max_tokens} tokens")
        tokens.append(token)
    return " ".join(tokens[1:])
