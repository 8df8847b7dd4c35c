from __future__ import annotations

import asyncio
from pathlib import Path

from autoinit import AutoInitiative
from autoinit_commands import registry
from campaign import Campaign
from cli import run_line
from tests._support.table_helpers import FixedDie


class RecordingCtx:
    def __init__(self) -> None:
        self.sent: list[str] = []

    async def send(self, message: str) -> None:
        self.sent.append(message)


def _run(app: AutoInitiative, *lines: str) -> list[str]:
    ctx = RecordingCtx()

    async def go() -> None:
        for line in lines:
            await run_line(line, ctx, app)

    asyncio.run(go())
    return ctx.sent


def test_help_lists_every_command(app: AutoInitiative) -> None:
    (text,) = _run(app, "!help")
    for root in ("autoinit", "char", "token", "page", "turnorder", "store", "help"):
        assert f"!{root}" in text


def test_help_for_subcommand(app: AutoInitiative) -> None:
    (text,) = _run(app, "!help autoinit --max")
    assert "!autoinit --max <n|none>" in text


def test_unknown_command(app: AutoInitiative) -> None:
    assert _run(app, "!dance") == ["❓ Unknown command `dance`"]


def test_full_table_session(campaign: Campaign, app: AutoInitiative) -> None:
    campaign.random_integer = FixedDie(11, 4)
    out = _run(
        app,
        "!char add gob Goblin",
        "!char attr gob initiative_bonus 2",
        "!token add g1 Goblin gob",
        "!token add g2 Goblin gob",
        "!token add g3 Goblin gob",
        "!autoinit --enable true --group true --max 2",
        "!turnorder open",
        "!turnorder",
    )
    assert "*(to gm)* **AutoInitiative**: Set Max Per Group to 2" in out
    assert "Turn order opened." in out
    shown = out[-1]
    assert shown.startswith("Turn order (open):")
    assert shown.index("`g1`") < shown.index("`g2`")
    assert "13" in shown and "6" in shown


def test_token_add_needs_known_character(app: AutoInitiative) -> None:
    assert _run(app, "!token add t1 Ghost nobody") == ["❌ Character 'nobody' not found."]


def test_missing_args_show_sub_help(app: AutoInitiative) -> None:
    (text,) = _run(app, "!char add onlyid")
    assert text.startswith("**Help: char add**")


def test_bad_option_reply_is_relayed(app: AutoInitiative) -> None:
    out = _run(app, "!autoinit --group yes")
    assert len(out) == 1
    assert "group must be 'true' or 'false'" in out[0]


def test_chat_rolls_are_echoed(campaign: Campaign, app: AutoInitiative) -> None:
    campaign.random_integer = FixedDie(7)
    out = _run(
        app,
        "!char add orc Orc",
        "!char attr orc initiative_bonus 1",
        "!token add o1 Orc orc",
        "!autoinit --enable true --output true",
        "!turnorder open",
    )
    roll_lines = [line for line in out if "{{tokenId=o1}}" in line]
    assert len(roll_lines) == 1
    assert "{{r1=8}}" in roll_lines[0]
    assert [(e.id, e.pr) for e in app.turn_order.entries()] == [("o1", 8)]


def test_store_round_trip(tmp_path: Path, app: AutoInitiative) -> None:
    path = tmp_path / "table.json"
    _run(app, "!char add orc Orc", "!autoinit --group true", f"!store save {path}")

    fresh = AutoInitiative(Campaign())
    out = _run(fresh, f"!store load {path}", "!char list")
    assert out[0] == f"Loaded from `{path}`"
    assert "**Orc**" in out[1]
    assert fresh.settings().group is True


def test_store_load_failure_is_reported(tmp_path: Path, app: AutoInitiative) -> None:
    out = _run(app, f"!store load {tmp_path / 'missing.json'}")
    assert out[0].startswith("❌ File not found")


def test_registry_roots_are_sorted() -> None:
    assert registry.roots() == sorted(registry.roots())
