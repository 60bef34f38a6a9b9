"""URL-safe, human-readable comic ids."""

import random
import re
import string
from datetime import datetime
from typing import Optional

from loguru import logger

from ..storage.kv import KeyValueStore, comic_key

MAX_SUFFIX_ATTEMPTS = 10
SLUG_MAX_LENGTH = 50

_BASE36 = string.digits + string.ascii_lowercase


def slugify(title: str) -> str:
    slug = title.lower()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    slug = slug.strip("-")
    return slug[:SLUG_MAX_LENGTH]


def _random_suffix(rng: random.Random, length: int) -> str:
    return "".join(rng.choice(_BASE36) for _ in range(length))


def generate_url_safe_id(
    title: Optional[str],
    now: datetime,
    rng: Optional[random.Random] = None,
) -> str:
    """Build ``{slug}-{YYYY-MM-DD}`` from a title.

    A missing title yields ``comic_{ms}_{random}``; a title with no usable
    characters yields ``comic-{date}-{random}``.
    """
    rng = rng or random.Random()
    if not title:
        return f"comic_{int(now.timestamp() * 1000)}_{_random_suffix(rng, 9)}"

    date_str = now.strftime("%Y-%m-%d")
    slug = slugify(title)
    if not slug:
        return f"comic-{date_str}-{_random_suffix(rng, 6)}"
    return f"{slug}-{date_str}"


async def generate_unique_comic_id(
    store: KeyValueStore,
    title: Optional[str],
    now: datetime,
    rng: Optional[random.Random] = None,
) -> str:
    """Return an id not currently present in storage.

    Tries the base id, then ``-1`` through ``-10``, then a millisecond
    timestamp suffix. The check and the later write are not atomic.
    """
    base_id = generate_url_safe_id(title, now, rng)
    if not await store.exists(comic_key(base_id)):
        return base_id

    for counter in range(1, MAX_SUFFIX_ATTEMPTS + 1):
        candidate = f"{base_id}-{counter}"
        if not await store.exists(comic_key(candidate)):
            return candidate

    fallback = f"{base_id}-{int(now.timestamp() * 1000)}"
    logger.warning(f"Comic id {base_id} collided {MAX_SUFFIX_ATTEMPTS} times, using {fallback}")
    return fallback
