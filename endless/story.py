"""Seeded story page generation.

A page is derived entirely from one integer seed and a transition model. A
single ``numpy.random.Generator`` is created from the seed and threaded
through every step in a fixed order:

1. the page's own title and URL
2. the body paragraph
3. the related links (each gets its own sub-seed and generator)
4. the last-updated timestamp
5. the author

Changing that order, or drawing from any other randomness source, changes
every page ever generated.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

import numpy as np

from endless.errors import InputError
from endless.model.transition import DEFAULT_MAX_TOKENS, TransitionModel, generate_sequence

logger = logging.getLogger(__name__)

AUTHORS: Tuple[str, ...] = (
    "Arlo Mills",
    "Joe Goetz",
    "Billy Goetz",
    "Marybeth Trott",
    "Charlie Davis",
    "Diana White",
    "Ethan Young",
)

SECONDS_PER_DAY = 86400
HOME_PAGE_SEED_STRIDE = 1000
MAX_SLUG_SOURCE_CHARS = 64
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

_WHITESPACE_RE = re.compile(r"\s+")
_INVALID_SLUG_CHARS_RE = re.compile(r"[^a-z0-9-]")
_HYPHEN_RUN_RE = re.compile(r"-{2,}")
_POST_PATH_RE = re.compile(r"^(-?\d+)(?:-.*)?$", re.DOTALL)


@dataclass(frozen=True)
class PageLink:
    """Link to a generated page."""

    url: str
    title: str
    seed: int


@dataclass(frozen=True)
class GeneratedPage:
    """A fully generated story page."""

    link: PageLink
    content: str
    links: Tuple[PageLink, ...]
    last_updated: datetime
    author: str


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def make_rng(seed: int) -> np.random.Generator:
    """Create the page generator for an int64 ``seed``.

    Negative seeds are mapped onto their unsigned 64-bit pattern since numpy
    only accepts non-negative seeds.
    """
    return np.random.default_rng(seed & 0xFFFFFFFFFFFFFFFF)


def slugify(title: str) -> str:
    """Turn a title into a URL slug made of ``[a-z0-9-]``.

    Only the first 64 characters of the raw title are used. The result never
    has leading, trailing or repeated hyphens, and slugifying a slug returns
    it unchanged.
    """
    slug = title[:MAX_SLUG_SOURCE_CHARS].strip().lower()
    slug = _WHITESPACE_RE.sub("-", slug)
    slug = _INVALID_SLUG_CHARS_RE.sub("", slug)
    slug = _HYPHEN_RUN_RE.sub("-", slug)
    return slug.strip("-")


def parse_seed(value: str) -> int:
    """Parse an int64 seed, raising InputError when it is not one."""
    try:
        seed = int(value.strip())
    except (AttributeError, ValueError):
        raise InputError(f"Invalid seed: {value!r}") from None
    if not INT64_MIN <= seed <= INT64_MAX:
        raise InputError(f"Seed out of range: {value!r}")
    return seed


def parse_post_path(path: str) -> int:
    """Extract the seed from a ``{seed}-{slug}`` post path.

    The slug is decorative and ignored.
    """
    match = _POST_PATH_RE.match(path)
    if match is None:
        raise InputError(f"Invalid post path: {path!r}")
    return parse_seed(match.group(1))


def _link_from_seed(
    seed: int,
    rng: np.random.Generator,
    model: TransitionModel,
    max_tokens: int,
) -> PageLink:
    title = generate_sequence(model, rng, max_tokens=max_tokens)
    return PageLink(url=f"/post/{seed}-{slugify(title)}", title=title, seed=seed)


def _create_paragraph(rng: np.random.Generator, model: TransitionModel, max_tokens: int) -> str:
    sentence_count = int(rng.integers(1, 11))
    sentences = [generate_sequence(model, rng, max_tokens=max_tokens) for _ in range(sentence_count)]
    return " ".join(sentences)


def _create_links(rng: np.random.Generator, model: TransitionModel, max_tokens: int) -> Tuple[PageLink, ...]:
    link_count = int(rng.integers(1, 4))
    links: List[PageLink] = []
    for _ in range(link_count):
        sub_seed = int(rng.integers(0, INT64_MAX, endpoint=True))
        links.append(_link_from_seed(sub_seed, make_rng(sub_seed), model, max_tokens))
    return tuple(links)


def _two_years_before(moment: datetime) -> datetime:
    try:
        return moment.replace(year=moment.year - 2)
    except ValueError:
        # 29 February
        return moment.replace(year=moment.year - 2, day=28)


def _random_date(rng: np.random.Generator, reference: datetime) -> datetime:
    start = _two_years_before(reference)
    seconds_range = int((reference - start).total_seconds())
    offset = int(rng.integers(seconds_range))
    return start + timedelta(seconds=offset)


def day_start(moment: datetime) -> datetime:
    """Return midnight UTC of the day containing ``moment``."""
    bucket = int(moment.timestamp()) // SECONDS_PER_DAY
    return datetime.fromtimestamp(bucket * SECONDS_PER_DAY, tz=timezone.utc)


def generate_page(
    seed: int,
    model: TransitionModel,
    reference: Optional[datetime] = None,
    max_tokens: int = DEFAULT_MAX_TOKENS,
) -> GeneratedPage:
    """Generate the page for ``seed``.

    Args:
        seed: int64 page seed
        model: Trained transition model
        reference: Moment the timestamp is drawn back from. Defaults to the
            start of the current UTC day, so a page is identical for a day.
        max_tokens: Per-sentence word limit

    Returns:
        The generated page

    Raises:
        GenerationError: If sampling the model fails
    """
    if reference is None:
        reference = day_start(_utc_now())

    rng = make_rng(seed)
    link = _link_from_seed(seed, rng, model, max_tokens)
    content = _create_paragraph(rng, model, max_tokens)
    links = _create_links(rng, model, max_tokens)
    last_updated = _random_date(rng, reference)
    author = AUTHORS[int(rng.integers(len(AUTHORS)))]

    return GeneratedPage(
        link=link,
        content=content,
        links=links,
        last_updated=last_updated,
        author=author,
    )


def home_page_seeds(count: int, now: Optional[datetime] = None) -> List[int]:
    """Return the page seeds shown on the home page for the day of ``now``."""
    if now is None:
        now = _utc_now()
    base = int(now.timestamp()) // SECONDS_PER_DAY
    return [base + i * HOME_PAGE_SEED_STRIDE for i in range(count)]


def generate_home_page_posts(
    model: TransitionModel,
    count: int,
    now: Optional[datetime] = None,
    max_tokens: int = DEFAULT_MAX_TOKENS,
) -> List[GeneratedPage]:
    """Generate the day's home page posts.

    Every call within the same UTC day returns the same pages in the same
    order; the set changes at day boundaries.
    """
    if now is None:
        now = _utc_now()
    reference = day_start(now)
    seeds = home_page_seeds(count, now)
    logger.debug(f"Generating {count} home page posts from base seed {seeds[0] if seeds else None}")
    return [generate_page(seed, model, reference=reference, max_tokens=max_tokens) for seed in seeds]


def page_to_dict(page: GeneratedPage) -> dict:
    """Convert a page to a JSON-friendly dictionary."""
    return {
        "link": _link_to_dict(page.link),
        "content": page.content,
        "links": [_link_to_dict(link) for link in page.links],
        "last_updated": page.last_updated.isoformat(),
        "author": page.author,
    }


def _link_to_dict(link: PageLink) -> dict:
    return {"url": link.url, "title": link.title, "seed": link.seed}
