## autoinit.py (Core, testable)

# autoinit.py
from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple
import json
import logging
import math
import re

from campaign import (
    AutoInitError, NotFound, Attribute, Character, Token,
    ChatMessage, CampaignChange, Event,
)

log = logging.getLogger(__name__)

# -------------------------
# Exceptions
# -------------------------
class MissingAttribute(AutoInitError):
    pass

class MalformedRollResult(AutoInitError):
    pass

class InvalidOption(AutoInitError):
    pass

# -------------------------
# Constants
# -------------------------
STATE_NAME = "AUTO_INITIATIVE"
SCRIPT_NAME = "AutoInitiative"
COMMAND_NAME = "!autoinit"
ROLL_TEMPLATE = "npc"
INIT_ATTRIBUTE = "initiative_bonus"
TOKEN_MARKERS: Tuple[str, ...] = ("blue", "brown", "green", "red", "yellow", "purple", "pink")

# -------------------------
# Host primitives the core relies on
# -------------------------
class Host(Protocol):
    playerpageid: str
    turnorder: str
    initiativepage: bool
    state: Dict[str, Any]
    def tokens_on_page(self, pageid: str) -> List[Token]: ...
    def get_character(self, char_id: str) -> Optional[Character]: ...
    def find_attribute(self, char_id: str, name: str) -> Optional[Attribute]: ...
    def random_integer(self, maximum: int) -> int: ...
    def is_player(self, controlledby: str) -> bool: ...
    def send_chat(self, who: str, content: str) -> ChatMessage: ...
    def pending_events(self) -> Iterable[Event]: ...

# -------------------------
# Settings
# -------------------------
DEFAULT_SETTINGS: Dict[str, Any] = {
    "group": False,
    "output": False,
    "players": False,
    "enable": False,
    "max_per_group": None,
}

# option name -> (settings key, schema, label shown in replies)
SETTINGS_SCHEMA: Dict[str, Dict[str, Any]] = {
    "group": {"key": "group", "type": "bool", "desc": "Group Monsters"},
    "output": {"key": "output", "type": "bool", "desc": "Send to Chat"},
    "enable": {"key": "enable", "type": "bool", "desc": "AutoInitiative"},
    "players": {"key": "players", "type": "bool", "desc": "Roll for players"},
    "max": {"key": "max_per_group", "type": "max", "desc": "Max Per Group"},
}

def _parse_bool(token: str) -> bool:
    if token == "true": return True
    if token == "false": return False
    raise InvalidOption("must be 'true' or 'false'")

def _parse_max(token: str) -> Optional[int]:
    if token == "none":
        return None
    try:
        num = float(token)
    except ValueError:
        num = 0.0
    # "3.0" is accepted as 3, "2.5" is not a group size
    if not num.is_integer() or num < 2:
        raise InvalidOption("max must be a valid number greater than 1 or 'none'.")
    return int(num)


@dataclass(frozen=True)
class Settings:
    group: bool = False
    output: bool = False
    players: bool = False
    enable: bool = False
    max_per_group: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_state(state: Dict[str, Any]) -> "Settings":
        d = dict(DEFAULT_SETTINGS)
        d.update(state.get(STATE_NAME) or {})
        return Settings(
            group=bool(d["group"]),
            output=bool(d["output"]),
            players=bool(d["players"]),
            enable=bool(d["enable"]),
            max_per_group=d["max_per_group"],
        )

    def save(self, state: Dict[str, Any]):
        state[STATE_NAME] = self.to_dict()

# -------------------------
# MarkerAllocator
# -------------------------
class MarkerAllocator:
    """
    Tags members of a split group with status markers.

    Subgroup n below the palette size gets the n-th marker. Larger indices are
    written in base P (P = palette size) and get one marker per digit; when a
    digit repeats, two more markers derived from the repeat count are added.
    The expansion is approximate: distinct indices >= P can share a marker set.
    """

    def __init__(self, palette: Sequence[str] = TOKEN_MARKERS):
        if not palette:
            raise ValueError("marker palette must not be empty")
        if len(set(palette)) != len(palette):
            raise ValueError("marker palette must not contain duplicates")
        self.palette: Tuple[str, ...] = tuple(palette)

    def markers_for(self, index: int) -> List[str]:
        if index < 0:
            raise ValueError(f"subgroup index must be non-negative, got {index}")
        size = len(self.palette)
        if index < size:
            return [self.palette[index]]
        if size == 1:
            # base 1 has no digits to spread over
            return [self.palette[0]]
        chosen: List[str] = []
        counts = [0] * size
        n = index
        while n > 0:
            remainder = n % size
            counts[remainder] += 1
            chosen.append(self.palette[remainder])
            n //= size
        repeated = next((c for c in counts if c > 1), None)
        if repeated:
            chosen.append(self.palette[(repeated + 1) % size])
            chosen.append(self.palette[(repeated + 2) % size])
        # keep first occurrence order, drop repeats
        return list(dict.fromkeys(chosen))

    def assign(self, token: Token, index: int):
        for marker in self.markers_for(index):
            token.set_marker(marker, True)
        log.debug("token %s subgroup %d markers %s", token.id, index, sorted(token.markers))

    def clear(self, tokens: Iterable[Token]):
        for token in tokens:
            for marker in self.palette:
                token.set_marker(marker, False)

# -------------------------
# GroupBuilder
# -------------------------
def group_key(token: Token) -> str:
    # NOTE: tokens representing the same character with different names are NOT grouped together.
    return f"{token.name}_{token.represents}"


def build_groups(
    tokens: Iterable[Token],
    group_enabled: bool,
    max_per_group: Optional[int],
    allocator: Optional[MarkerAllocator] = None,
) -> Dict[str, List[Token]]:
    """
    Sort tokens into initiative groups.

    Without grouping every token is its own group keyed by id. With grouping,
    tokens sharing name and represented character share a group, and groups
    larger than max_per_group are dealt round-robin into subgroups keyed
    "<key>_<index>", each member tagged with its subgroup's markers.
    """
    by_type: Dict[str, List[Token]] = {}
    for token in tokens:
        if not group_enabled:
            by_type[token.id] = [token]
        else:
            by_type.setdefault(group_key(token), []).append(token)

    if not max_per_group or not group_enabled:
        return by_type

    allocator = allocator or MarkerAllocator()
    groups: Dict[str, List[Token]] = {}
    for key, members in by_type.items():
        if len(members) <= max_per_group:
            groups[key] = members
            continue
        num_splits = math.ceil(len(members) / max_per_group)
        for i, token in enumerate(members):
            sub = i % num_splits
            groups.setdefault(f"{key}_{sub}", []).append(token)
            allocator.assign(token, sub)
        log.info("split group %s (%d tokens) into %d subgroups", key, len(members), num_splits)
    return groups

# -------------------------
# Turn order
# -------------------------
@dataclass
class TurnEntry:
    id: str
    pr: float
    custom: str = ""
    _pageid: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "pr": self.pr, "custom": self.custom, "_pageid": self._pageid}

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "TurnEntry":
        return TurnEntry(
            id=d["id"],
            pr=d.get("pr", 0),
            custom=d.get("custom", ""),
            _pageid=d.get("_pageid", ""),
        )


def _decode_queue(raw: Optional[str]) -> Optional[List[TurnEntry]]:
    """None when no queue exists on the host."""
    if not raw:
        return None
    data = json.loads(raw)
    if data is None:
        return None
    return [TurnEntry.from_dict(d) for d in data]


def _pr_value(entry: TurnEntry) -> float:
    try:
        return float(entry.pr)
    except (TypeError, ValueError):
        return 0.0


class TurnOrderManager:
    def __init__(self, host: Host, allocator: Optional[MarkerAllocator] = None):
        self.host = host
        self.allocator = allocator or MarkerAllocator()
        # last closed queue, process memory only
        self.prev_turnorder: Optional[str] = None

    def entries(self) -> List[TurnEntry]:
        return _decode_queue(self.host.turnorder) or []

    def reset(self):
        self.host.turnorder = "[]"

    def _persist(self, entries: List[TurnEntry]):
        # stable: ties keep their previous relative order
        ordered = sorted(entries, key=_pr_value, reverse=True)
        self.host.turnorder = json.dumps([e.to_dict() for e in ordered])

    def append(self, entries: Iterable[TurnEntry]):
        current = _decode_queue(self.host.turnorder) or []
        current.extend(entries)
        self._persist(current)

    def ingest_async_result(self, token_id: str, page: str, priority: float):
        current = _decode_queue(self.host.turnorder)
        if current is None:
            log.debug("no turn order open, dropping roll for %s", token_id)
            return
        current.append(TurnEntry(id=token_id, pr=priority, custom="", _pageid=page))
        self._persist(current)

    def snapshot_on_close(self, previous_queue: Optional[str]):
        self.prev_turnorder = previous_queue

    def recover(self) -> bool:
        if self.prev_turnorder is None:
            return False
        self.host.turnorder = self.prev_turnorder
        return True

    def clear_all_markers(self, tokens: Iterable[Token]):
        self.allocator.clear(tokens)

# -------------------------
# InitiativeRoller
# -------------------------
def roll_request(name: str, token: Token) -> str:
    return (
        f"@{{{name}|wtype}}&{{template:{ROLL_TEMPLATE}}} {{{{name={name}}}}} "
        f"{{{{page={token.pageid}}}}} {{{{tokenId={token.id}}}}} {{{{rname=^{{init}}}}}} "
        f"{{{{r1=[[1d20+[[@{{{name}|{INIT_ATTRIBUTE}}}]][DEX] ]]}}}} {{{{normal=1}}}} {{{{type=Initiative}}}}"
    )


class InitiativeRoller:
    def __init__(self, host: Host):
        self.host = host

    def bonus_for(self, character: Character) -> float:
        attr = self.host.find_attribute(character.id, INIT_ATTRIBUTE)
        if attr is None:
            raise MissingAttribute(f"{character.name} has no '{INIT_ATTRIBUTE}' attribute")
        try:
            bonus = float(attr.current)
        except (TypeError, ValueError):
            raise MissingAttribute(f"{character.name} has a non-numeric '{INIT_ATTRIBUTE}': {attr.current!r}")
        return int(bonus) if bonus.is_integer() else bonus

    def roll(self, token: Token, output_to_chat: bool, turn_queue: List[TurnEntry]):
        character = self.host.get_character(token.represents)
        if character is None:
            raise NotFound(f"Token '{token.id}' does not represent a known character")
        if output_to_chat:
            # tokenId/page ride along in the request so the result can be matched back
            self.host.send_chat(SCRIPT_NAME, roll_request(character.name, token))
            return
        bonus = self.bonus_for(character)
        total = self.host.random_integer(20) + bonus
        turn_queue.append(TurnEntry(id=token.id, pr=total, custom="", _pageid=token.pageid))

# -------------------------
# Roll result parsing
# -------------------------
_TOKEN_ID_RE = re.compile(r"\{\{tokenId=(.*?)\}\}")
_PAGE_RE = re.compile(r"\{\{page=(.*?)\}\}")

def parse_roll_result(msg: ChatMessage) -> Tuple[str, str, float]:
    token_match = _TOKEN_ID_RE.search(msg.content or "")
    page_match = _PAGE_RE.search(msg.content or "")
    if not token_match or not page_match:
        raise MalformedRollResult("roll result is missing tokenId or page")
    try:
        total = msg.inlinerolls[1]["results"]["total"]
    except (IndexError, KeyError, TypeError):
        raise MalformedRollResult("roll result has no initiative total")
    if isinstance(total, bool) or not isinstance(total, (int, float)):
        raise MalformedRollResult(f"roll total is not numeric: {total!r}")
    return token_match.group(1), page_match.group(1), total

# -------------------------
# Option commands
# -------------------------
USAGE = (
    "Proper usage: !autoinit --option arg\n"
    "Commands:\n"
    "  !autoinit - Get settings menu.\n"
    "  !autoinit --recover - Restore last closed turnorder.\n"
    "  !autoinit --clear - Remove color token markers.\n"
    "Options:\n"
    "  --enable [true|false] - Enable or disable script.\n"
    "  --group [true|false] - Whether to group monsters or roll individually.\n"
    "  --output [true|false] - Whether to send rolls to chat.\n"
    "  --players [true|false] - Whether to roll for player characters.\n"
    "  --max [number|none] - Maximum number of tokens in one group. "
    "If group limit is exceeded tokens are placed into color-coordinated subgroups."
)

def parse_options(content: str) -> List[Tuple[str, Any]]:
    """
    Turn "!autoinit --group true --max 3" into [("group", True), ("max", 3)].

    Every option is validated before anything is returned, so a bad option
    rejects the whole command.
    """
    args = re.split(r"\s+--", content.strip())
    command = args.pop(0)
    if command != COMMAND_NAME:
        raise InvalidOption(f"Unknown command '{command}'.")
    actions: List[Tuple[str, Any]] = []
    for arg in args:
        params = arg.split()
        name = params[0] if params else ""
        if name in ("clear", "recover"):
            actions.append((name, None))
            continue
        spec = SETTINGS_SCHEMA.get(name)
        if spec is None:
            raise InvalidOption(f"Unknown option '--{name}'.")
        if spec["type"] == "bool":
            if len(params) != 2:
                raise InvalidOption(f"{name} must be 'true' or 'false'")
            try:
                value = _parse_bool(params[1])
            except InvalidOption as e:
                raise InvalidOption(f"{name} {e}")
        else:
            if len(params) != 2:
                raise InvalidOption(f"--{name} expects exactly one value.")
            value = _parse_max(params[1])
        actions.append((name, value))
    return actions

# -------------------------
# AutoInitiative (event handlers)
# -------------------------
class AutoInitiative:
    def __init__(self, host: Host, palette: Sequence[str] = TOKEN_MARKERS):
        self.host = host
        self.allocator = MarkerAllocator(palette)
        self.turn_order = TurnOrderManager(host, self.allocator)
        self.roller = InitiativeRoller(host)

    # ----- settings -----
    def settings(self) -> Settings:
        return Settings.from_state(self.host.state)

    def _whisper(self, text: str):
        self.host.send_chat(SCRIPT_NAME, "/w gm " + text)

    # ----- dispatch -----
    def handle(self, event: Event):
        if isinstance(event, ChatMessage):
            self.handle_chat(event)
        elif isinstance(event, CampaignChange) and event.prop == "initiativepage":
            self.handle_initiative_page(event.previous, event.value)

    def pump(self) -> List[ChatMessage]:
        """Handle queued host events one at a time, oldest first."""
        delivered: List[ChatMessage] = []
        for event in self.host.pending_events():
            self.handle(event)
            if isinstance(event, ChatMessage):
                delivered.append(event)
        return delivered

    def handle_chat(self, msg: ChatMessage):
        if msg.who == SCRIPT_NAME and msg.rolltemplate == ROLL_TEMPLATE:
            self._add_roll_result(msg)
            return
        if msg.type != "api" or not msg.content.startswith(COMMAND_NAME):
            return
        self.run_command(msg.content)

    def _add_roll_result(self, msg: ChatMessage):
        try:
            token_id, page, total = parse_roll_result(msg)
        except MalformedRollResult as e:
            log.warning("dropping roll result: %s", e)
            return
        log.info("roll result for %s: %s", token_id, total)
        self.turn_order.ingest_async_result(token_id, page, total)

    def run_command(self, content: str):
        try:
            actions = parse_options(content)
        except InvalidOption as e:
            log.info("rejected command %r: %s", content, e)
            self._whisper(f"{e}\n{USAGE}")
            return
        if not actions:
            self._whisper(self.config_summary())
            return
        settings = self.settings().to_dict()
        for name, value in actions:
            if name == "clear":
                self.clear_markers()
                self._whisper("Cleared color markers")
            elif name == "recover":
                if self.turn_order.recover():
                    self._whisper("Recovered last turnorder")
            elif name == "max":
                settings["max_per_group"] = value
                self._whisper("Disabled Max Per Group limit" if value is None else f"Set Max Per Group to {value}")
            else:
                spec = SETTINGS_SCHEMA[name]
                settings[spec["key"]] = value
                self._whisper(spec["desc"] + (" Enabled" if value else " Disabled"))
        Settings(**settings).save(self.host.state)
        log.info("settings now %s", settings)

    def config_summary(self) -> str:
        s = self.settings()
        def onoff(v: bool) -> str:
            return "enabled" if v else "disabled"
        return "\n".join([
            "AutoInitiative settings:",
            f"- AutoInitiative: {onoff(s.enable)}",
            f"- Group Monsters: {onoff(s.group)}",
            f"- Send to Chat: {onoff(s.output)}",
            f"- Roll for Players: {onoff(s.players)}",
            f"- Max tokens per group: {s.max_per_group if s.max_per_group else 'none'}",
        ])

    def clear_markers(self):
        self.turn_order.clear_all_markers(self.host.tokens_on_page(self.host.playerpageid))

    # ----- visibility -----
    def handle_initiative_page(self, previous: Dict[str, Any], visible: Optional[bool] = None):
        if visible is None:
            visible = self.host.initiativepage
        if not visible:
            # turn order is being closed
            self.turn_order.snapshot_on_close(previous.get("turnorder"))
            return
        settings = self.settings()
        if not settings.enable:
            return
        self.roll_all(settings)

    def eligible_tokens(self, settings: Settings) -> List[Token]:
        tokens = []
        for token in self.host.tokens_on_page(self.host.playerpageid):
            character = self.host.get_character(token.represents)
            if character and (settings.players or not self.host.is_player(character.controlledby)):
                tokens.append(token)
        return tokens

    def roll_all(self, settings: Settings):
        self.turn_order.reset()
        rolled: List[TurnEntry] = []
        groups = build_groups(
            self.eligible_tokens(settings), settings.group, settings.max_per_group, self.allocator
        )
        log.info("rolling initiative for %d group(s)", len(groups))
        for key, members in groups.items():
            try:
                self.roller.roll(members[0], settings.output, rolled)
            except AutoInitError as e:
                log.warning("skipping group %s: %s", key, e)
                self._whisper(f"Could not roll initiative for {members[0].name}: {e}")
        if not settings.output:
            self.turn_order.append(rolled)
