"""Tests for seeded story page generation.

These tests verify:
1. Slug charset, length cap and idempotence
2. Post path parsing
3. Page determinism and field ranges
4. Home page seeds that are stable for a UTC day
"""

import re
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from endless.errors import GenerationError, InputError
from endless.model import TransitionModel, generate_sequence, train_model
from endless.story import (
    AUTHORS,
    GeneratedPage,
    day_start,
    generate_home_page_posts,
    generate_page,
    home_page_seeds,
    make_rng,
    page_to_dict,
    parse_post_path,
    slugify,
)

CORPUS = (
    "The old lighthouse keeper climbed the stairs. "
    "The sea was calm that night. "
    "A ship appeared on the horizon! "
    "Was it the ship he had waited for? "
    "The keeper lit the lamp. "
    "The ship turned toward the harbor."
)

REFERENCE = datetime(2026, 10, 19, tzinfo=timezone.utc)
SLUG_RE = re.compile(r"^([a-z0-9]+(-[a-z0-9]+)*)?$")


@pytest.fixture
def model():
    """Model trained on a small corpus where only final words end in '.', '!' or '?'."""
    return train_model(CORPUS)


def _sentence_count(text):
    return sum(1 for word in text.split() if word.endswith((".", "!", "?")))


class TestSlugify:
    """Tests for URL slugs."""

    @pytest.mark.parametrize("title, expected", [
        ("The Cat Sat!", "the-cat-sat"),
        ("  Hello -- World  ", "hello-world"),
        ("What? Really... yes.", "what-really-yes"),
        ("Ünïcode café", "ncode-caf"),
        ("already-a-slug", "already-a-slug"),
        ("!!!", ""),
        ("", ""),
    ])
    def test_examples(self, title, expected):
        """Test representative titles."""
        assert slugify(title) == expected

    def test_uses_first_64_characters(self):
        """Test that only the start of a long title is slugified."""
        assert slugify("a" * 100) == "a" * 64
        assert slugify("x" * 64 + " tail") == "x" * 64

    @pytest.mark.parametrize("title", [
        "The Cat Sat!",
        "  -- leading and trailing --  ",
        "Tabs\tand\nnewlines",
        "Mixed CASE 123 numbers",
        "émoji 🎉 party",
        "a" * 80 + " b",
    ])
    def test_charset_and_idempotence(self, title):
        """Test that slugs use [a-z0-9-] without stray hyphens and are stable."""
        slug = slugify(title)

        assert SLUG_RE.match(slug)
        assert slugify(slug) == slug


class TestParsePostPath:
    """Tests for extracting seeds from post paths."""

    @pytest.mark.parametrize("path, seed", [
        ("123-the-cat-sat", 123),
        ("42", 42),
        ("-7-negative-seed", -7),
        ("0-", 0),
        ("9223372036854775807-max", 2**63 - 1),
        ("-9223372036854775808-min", -(2**63)),
    ])
    def test_valid_paths(self, path, seed):
        """Test that the seed is read and the slug ignored."""
        assert parse_post_path(path) == seed

    @pytest.mark.parametrize("path", [
        "abc",
        "",
        "-",
        "12abc",
        "9223372036854775808-too-big",
    ])
    def test_invalid_paths(self, path):
        """Test that malformed or out-of-range seeds raise InputError."""
        with pytest.raises(InputError):
            parse_post_path(path)


class TestGeneratePage:
    """Tests for single page generation."""

    def test_same_seed_same_page(self, model):
        """Test that a page is a pure function of seed, model and reference."""
        first = generate_page(42, model, reference=REFERENCE)
        second = generate_page(42, model, reference=REFERENCE)

        assert first == second

    def test_default_reference_is_stable(self, model):
        """Test that pages repeat without an explicit reference."""
        first = generate_page(7, model)
        second = generate_page(7, model)

        assert first.link == second.link
        assert first.content == second.content
        assert first.links == second.links

    def test_equal_models_give_equal_pages(self):
        """Test that training order does not affect pages."""
        sentences = ["The sea was calm.", "A ship appeared!", "The ship turned.", "Was it calm?"]
        forward = train_model(" ".join(sentences))
        backward = train_model(" ".join(reversed(sentences)))

        assert forward == backward
        assert generate_page(99, forward, reference=REFERENCE) == generate_page(99, backward, reference=REFERENCE)

    def test_link_url_matches_title(self, model):
        """Test the page's own link."""
        page = generate_page(42, model, reference=REFERENCE)

        assert page.link.seed == 42
        assert page.link.url == f"/post/42-{slugify(page.link.title)}"
        assert page.link.title

    def test_negative_seed(self, model):
        """Test that negative seeds generate normally."""
        page = generate_page(-5, model, reference=REFERENCE)

        assert page.link.url.startswith("/post/-5-")

    @pytest.mark.parametrize("seed", range(25))
    def test_field_ranges(self, model, seed):
        """Test paragraph, link, date and author bounds."""
        page = generate_page(seed, model, reference=REFERENCE)

        assert 1 <= _sentence_count(page.content) <= 10
        assert 1 <= len(page.links) <= 3
        assert _two_years_ago(REFERENCE) <= page.last_updated < REFERENCE
        assert page.author in AUTHORS

    def test_related_links_are_reproducible(self, model):
        """Test that each related link is the link its own seed would produce."""
        page = generate_page(1234, model, reference=REFERENCE)

        for link in page.links:
            assert 0 <= link.seed <= 2**63 - 1
            assert link.title == generate_sequence(model, make_rng(link.seed))
            assert link.url == f"/post/{link.seed}-{slugify(link.title)}"
            assert generate_page(link.seed, model, reference=REFERENCE).link == link

    def test_leap_day_reference(self, model):
        """Test that a 29 February reference does not fail."""
        reference = datetime(2024, 2, 29, tzinfo=timezone.utc)

        page = generate_page(3, model, reference=reference)

        assert datetime(2022, 2, 28, tzinfo=timezone.utc) <= page.last_updated < reference

    def test_empty_model_raises(self):
        """Test that an empty model cannot generate a page."""
        with pytest.raises(GenerationError):
            generate_page(1, TransitionModel(), reference=REFERENCE)

    def test_page_to_dict(self, model):
        """Test JSON conversion."""
        page = generate_page(42, model, reference=REFERENCE)
        data = page_to_dict(page)

        assert data["link"] == {"url": page.link.url, "title": page.link.title, "seed": 42}
        assert data["content"] == page.content
        assert len(data["links"]) == len(page.links)
        assert data["last_updated"] == page.last_updated.isoformat()
        assert data["author"] == page.author


class TestHomePage:
    """Tests for the home page post list."""

    def test_seed_spacing(self):
        """Test that seeds start at the day number and step by 1000."""
        now = datetime(2026, 10, 19, 15, 30, tzinfo=timezone.utc)
        base = int(now.timestamp()) // 86400

        assert home_page_seeds(4, now) == [base, base + 1000, base + 2000, base + 3000]

    def test_same_day_same_posts(self, model):
        """Test that two moments within one UTC day give the same posts."""
        morning = datetime(2026, 10, 19, 0, 0, 1, tzinfo=timezone.utc)
        evening = datetime(2026, 10, 19, 23, 59, 59, tzinfo=timezone.utc)

        assert generate_home_page_posts(model, 3, now=morning) == generate_home_page_posts(model, 3, now=evening)

    def test_next_day_changes_seeds(self, model):
        """Test that the seed set moves at the day boundary."""
        today = datetime(2026, 10, 19, 12, tzinfo=timezone.utc)
        tomorrow = today + timedelta(days=1)

        assert home_page_seeds(3, today) != home_page_seeds(3, tomorrow)
        posts = generate_home_page_posts(model, 3, now=tomorrow)
        assert [p.link.seed for p in posts] == home_page_seeds(3, tomorrow)
        assert generate_home_page_posts(model, 3, now=today) != posts
        assert [p.content for p in generate_home_page_posts(model, 3, now=today)] != [p.content for p in posts]

    def test_zero_posts(self, model):
        """Test that a count of zero yields nothing."""
        assert generate_home_page_posts(model, 0, now=REFERENCE) == []

    def test_posts_are_pages(self, model):
        """Test that home page posts are regular pages."""
        posts = generate_home_page_posts(model, 2, now=REFERENCE)

        assert all(isinstance(post, GeneratedPage) for post in posts)
        assert posts[0] == generate_page(posts[0].link.seed, model, reference=REFERENCE)

    def test_day_start(self):
        """Test truncation to midnight UTC."""
        moment = datetime(2026, 10, 19, 17, 45, 12, tzinfo=timezone.utc)

        assert day_start(moment) == datetime(2026, 10, 19, tzinfo=timezone.utc)


def _two_years_ago(moment):
    return moment.replace(year=moment.year - 2)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
