"""Deterministic per-comic character styles."""

from typing import Dict

from ..models import Comic

STYLE_PALETTE_SIZE = 5


def character_style_map(comic: Comic) -> Dict[str, int]:
    """Map every distinct character name in the comic to a style in 1..5.

    Names are sorted so the mapping does not depend on panel order or on any
    style the model already assigned.
    """
    names = sorted({c.name for panel in comic.panels for c in panel.characters if c.name})
    return {name: (index % STYLE_PALETTE_SIZE) + 1 for index, name in enumerate(names)}


def assign_character_styles(comic: Comic) -> Comic:
    """Apply ``character_style_map`` to every character occurrence in place."""
    styles = character_style_map(comic)
    for panel in comic.panels:
        for character in panel.characters:
            if character.name in styles:
                character.style = styles[character.name]
    return comic
