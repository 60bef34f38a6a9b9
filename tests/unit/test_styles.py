"""Unit tests for deterministic character styles."""

from nrrds.generation.styles import assign_character_styles, character_style_map
from nrrds.models import Character, Comic, Panel


def test_style_map_sorted_by_name(comic_json):
    comic = Comic.model_validate(comic_json)
    assert character_style_map(comic) == {"Dana": 1, "Raj": 2}


def test_assign_overrides_model_styles(comic_json):
    """Same name gets the same style in every panel regardless of model output."""
    comic = assign_character_styles(Comic.model_validate(comic_json))

    styles = {}
    for panel in comic.panels:
        for character in panel.characters:
            styles.setdefault(character.name, set()).add(character.style)
    assert styles == {"Dana": {1}, "Raj": {2}}


def test_assign_is_idempotent(comic_json):
    comic = assign_character_styles(Comic.model_validate(comic_json))
    before = comic.model_dump()
    assert assign_character_styles(comic).model_dump() == before


def test_styles_wrap_after_palette():
    names = [f"C{i}" for i in range(7)]
    comic = Comic(title="Crowd", panels=[Panel(characters=[Character(name=n) for n in names])])

    styles = character_style_map(comic)
    assert styles["C0"] == 1
    assert styles["C4"] == 5
    assert styles["C5"] == 1
    assert all(1 <= s <= 5 for s in styles.values())
