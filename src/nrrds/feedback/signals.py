"""Feedback keys extracted from a finished comic.

Tokens are content words; concepts are labels from a small fixed taxonomy so
that per-concept statistics stay dense.
"""

import re
from typing import Dict, List, Optional, Tuple

from ..models import Comic, Guidance

MAX_TOKENS = 50
MAX_GUIDED_CONCEPTS = 2

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "is", "are", "was", "were", "be", "been", "have", "has",
    "had", "do", "does", "did", "will", "would", "could", "should", "can",
    "may", "might", "must", "i", "you", "he", "she", "it", "we", "they",
    "this", "that", "these", "those",
})

# Concept -> keywords matched as substrings of the lowercased title and dialogue
CONCEPT_TAXONOMY: Dict[str, Tuple[str, ...]] = {
    "tech": ("bug", "code", "computer", "software", "program", "debug", "api", "server"),
    "work": ("meeting", "boss", "office", "deadline", "project", "email", "corporate"),
    "procrastination": ("later", "tomorrow", "procrastinat", "delay", "postpone"),
    "coffee": ("coffee", "caffeine", "espresso", "latte", "brew"),
    "sleep": ("sleep", "tired", "fatigue", "exhausted", "sleepy", "nap", "insomnia"),
    "time-pressure": ("hurry", "rush", "deadline", "late", "quick", "urgent"),
    "frustration": ("angry", "upset", "annoyed", "irritated", "mad"),
    "escalation": ("worse", "terrible", "awful", "horrible", "disaster"),
    "social": ("friend", "family", "relationship", "dating", "party", "social"),
    "hobbies": ("game", "sport", "music", "art", "book", "movie", "hobby"),
    "food": ("food", "eat", "hungry", "restaurant", "cook", "recipe", "meal"),
    "exercise": ("gym", "workout", "run", "exercise", "fitness", "health"),
}

_PUNCTUATION = re.compile(r"[^\w\s]")


def _dedupe(items: List[str]) -> List[str]:
    return list(dict.fromkeys(items))


def extract_tokens(comic: Comic) -> List[str]:
    """Lowercased content words from the title, panel headers and dialogue."""
    parts = [comic.title.lower()] if comic.title else []
    for panel in comic.panels:
        if panel.header:
            parts.append(panel.header.lower())
        parts.extend(line.text.lower() for line in panel.dialogue if line.text)

    text = _PUNCTUATION.sub(" ", " ".join(parts))
    tokens = [t for t in text.split() if len(t) > 2 and t not in STOP_WORDS]
    return _dedupe(tokens[:MAX_TOKENS])


def extract_concepts(comic: Comic, guidance: Optional[Guidance] = None) -> List[str]:
    """Taxonomy concepts matched in the title or dialogue, plus up to two
    concepts the guidance asked to encourage."""
    title = comic.title.lower()
    dialogue = " ".join(
        " ".join(line.text.lower() for line in panel.dialogue)
        for panel in comic.panels
    )

    concepts = [
        concept for concept, keywords in CONCEPT_TAXONOMY.items()
        if any(k in title or k in dialogue for k in keywords)
    ]
    if guidance is not None:
        concepts.extend(guidance.encourage_concepts[:MAX_GUIDED_CONCEPTS])
    return _dedupe(concepts)
