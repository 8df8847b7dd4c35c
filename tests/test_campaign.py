from __future__ import annotations

from pathlib import Path

import pytest

from campaign import AutoInitError, Campaign, ChatMessage, DuplicateId
from tests._support.table_helpers import FixedDie, add_npc


def test_inline_rolls_resolve_innermost_first() -> None:
    c = Campaign()
    c.random_integer = FixedDie(14)
    msg = c.send_chat("Someone", "{{r1=[[1d20+[[3]][DEX] ]]}}")
    assert [r["results"]["total"] for r in msg.inlinerolls] == [3, 17]
    assert msg.content == "{{r1=$[[1]]}}"
    assert msg.render() == "{{r1=17}}"


def test_attribute_references_are_substituted() -> None:
    c = Campaign()
    add_npc(c, "c1", "Orc", 2)
    msg = c.send_chat("x", "bonus @{Orc|initiative_bonus} missing @{Orc|nope}.")
    assert msg.content == "bonus 2 missing ."


def test_dice_terms_sum_with_signs() -> None:
    c = Campaign()
    c.random_integer = FixedDie(4)
    msg = c.send_chat("x", "[[2d6-1+3]]")
    assert msg.inlinerolls[0]["results"]["total"] == 4 + 4 - 1 + 3


def test_whisper_and_template_are_detected() -> None:
    c = Campaign()
    msg = c.send_chat("AutoInitiative", "/w gm &{template:npc} {{name=x}}")
    assert msg.type == "whisper"
    assert msg.target == "gm"
    assert msg.rolltemplate == "npc"
    assert msg.content.startswith("&{template:npc}")


def test_visibility_change_is_queued_once() -> None:
    c = Campaign()
    c.turnorder = "[]"
    c.set_initiative_page(True)
    c.set_initiative_page(True)
    events = list(c.pending_events())
    assert len(events) == 1
    assert events[0].previous == {"initiativepage": False, "turnorder": "[]"}


def test_is_player() -> None:
    c = Campaign()
    assert c.is_player("") is False
    assert c.is_player("GM") is False
    assert c.is_player("GM,p1") is True
    assert c.is_player("all") is True


def test_duplicate_ids_are_rejected() -> None:
    c = Campaign()
    c.add_character("c1", "Orc")
    with pytest.raises(DuplicateId):
        c.add_character("c1", "Orc again")
    c.add_token("t1", "Orc", represents="c1")
    with pytest.raises(DuplicateId):
        c.add_token("t1", "Orc", represents="c1")


def test_save_load_round_trip(tmp_path: Path) -> None:
    c = Campaign()
    add_npc(c, "c1", "Orc", 2, controlledby="p1")
    t = c.add_token("t1", "Orc", represents="c1")
    t.set_marker("blue", True)
    c.turnorder = '[{"id": "t1", "pr": 5, "custom": "", "_pageid": "page1"}]'
    c.state["AUTO_INITIATIVE"] = {"group": True}
    c.send_chat("x", "not persisted")
    path = tmp_path / "campaign.json"
    c.save(str(path))

    loaded = Campaign()
    loaded.load(str(path))
    assert loaded.characters["c1"].controlledby == "p1"
    assert loaded.find_attribute("c1", "initiative_bonus").current == "2"
    assert loaded.tokens["t1"].markers == {"blue"}
    assert loaded.turnorder == c.turnorder
    assert loaded.state == {"AUTO_INITIATIVE": {"group": True}}
    assert list(loaded.pending_events()) == []


def test_load_missing_file(tmp_path: Path) -> None:
    with pytest.raises(AutoInitError, match="File not found"):
        Campaign().load(str(tmp_path / "nope.json"))


def test_load_bad_json(tmp_path: Path) -> None:
    path = tmp_path / "bad.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(AutoInitError, match="Failed to load"):
        Campaign().load(str(path))


def test_render_leaves_unknown_placeholders() -> None:
    msg = ChatMessage(who="x", content="$[[4]]")
    assert msg.render() == "$[[4]]"


def test_decimal_terms_are_added_as_numbers() -> None:
    c = Campaign()
    c.random_integer = FixedDie(10)
    msg = c.send_chat("x", "[[1d20+2.5]] [[1.5+1.5]]")
    assert [r["results"]["total"] for r in msg.inlinerolls] == [12.5, 3]


def test_zero_sided_die_is_rejected() -> None:
    c = Campaign()
    with pytest.raises(AutoInitError, match="0 sides"):
        c.send_chat("x", "[[1d0+2]]")
    assert list(c.pending_events()) == []


def test_failed_load_leaves_table_untouched(tmp_path: Path) -> None:
    c = Campaign()
    add_npc(c, "c1", "Orc", 2)
    c.add_token("t1", "Orc", represents="c1")
    path = tmp_path / "broken.json"
    path.write_text('{"characters": {}, "tokens": {"x": {"bogus": 1}}}', encoding="utf-8")
    with pytest.raises(AutoInitError, match="Invalid campaign file format"):
        c.load(str(path))
    assert list(c.characters) == ["c1"]
    assert list(c.tokens) == ["t1"]
    assert c.find_attribute("c1", "initiative_bonus").current == "2"
