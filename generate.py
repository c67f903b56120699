#!/usr/bin/env python
"""Generate Endless story pages from the newest stored model.

Usage:
    python generate.py --seed 42
    python generate.py --seed 42 --stream     # type the page out live as HTML
    python generate.py --home 6               # today's home page posts
"""

import argparse
import asyncio
import json
import logging
import os
import sys

sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from endless.cache import ModelCache
from endless.config import load_config
from endless.errors import EndlessError, SinkClosedError
from endless.store import SQLiteModelStore
from endless.story import generate_home_page_posts, generate_page, page_to_dict
from endless.streaming import PageStreamer, TextStreamSink

logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def print_page(page):
    print("\n" + "=" * 60)
    print(page.link.title)
    print(f"{page.author} - {page.last_updated:%B %d, %Y}  ({page.link.url})")
    print("-" * 60)
    print(page.content)
    print("-" * 60)
    for link in page.links:
        print(f"  -> {link.title}  ({link.url})")
    print("=" * 60)


def main():
    parser = argparse.ArgumentParser(description="Generate story pages with an Endless model")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--seed", type=int, help="Page seed")
    group.add_argument("--home", type=int, metavar="COUNT", help="Print today's home page posts")
    parser.add_argument("--config", type=str, default=None, help="Path to config file")
    parser.add_argument("--db", type=str, default=None, help="SQLite model store (overrides config)")
    parser.add_argument("--stream", action="store_true", help="Stream the page as HTML with typing delays")
    parser.add_argument("--json", action="store_true", help="Print JSON instead of text")

    args = parser.parse_args()

    config = load_config(args.config)
    max_tokens = config["generation"]["max_sentence_tokens"]

    try:
        cache = ModelCache(SQLiteModelStore(args.db or config["store"]["db_path"]))
        model = cache.get_active()

        if args.home is not None:
            pages = generate_home_page_posts(model, args.home, max_tokens=max_tokens)
        else:
            pages = [generate_page(args.seed, model, max_tokens=max_tokens)]

        if args.stream:
            streamer = PageStreamer.from_config(config["streaming"])
            sink = TextStreamSink(sys.stdout.buffer)
            for page in pages:
                asyncio.run(streamer.stream_page(page, sink))
        elif args.json:
            print(json.dumps([page_to_dict(page) for page in pages], indent=2, ensure_ascii=False))
        else:
            for page in pages:
                print_page(page)

    except SinkClosedError:
        # Output pipe closed (e.g. piped into head)
        pass
    except EndlessError as e:
        logger.error(f"Generation failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
