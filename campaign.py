## campaign.py (in-memory host: tokens, characters, chat, turn order)

# campaign.py
from __future__ import annotations
from collections import deque
from dataclasses import dataclass, field, asdict
from typing import Any, Deque, Dict, Iterator, List, Optional, Set, Tuple, Union
import json
import logging
import random
import re

log = logging.getLogger(__name__)

# -------------------------
# Exceptions
# -------------------------
class AutoInitError(Exception):
    pass

class NotFound(AutoInitError):
    pass

class DuplicateId(AutoInitError):
    pass

# -------------------------
# Data Models
# -------------------------
@dataclass
class Character:
    id: str
    name: str
    # comma separated user ids, "all" means every player
    controlledby: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "Character":
        return Character(id=d["id"], name=d["name"], controlledby=d.get("controlledby", ""))


@dataclass
class Attribute:
    characterid: str
    name: str
    current: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "Attribute":
        return Attribute(characterid=d["characterid"], name=d["name"], current=str(d.get("current", "")))


@dataclass
class Token:
    id: str
    name: str
    pageid: str
    represents: str = ""
    markers: Set[str] = field(default_factory=set)

    def set_marker(self, marker: str, value: bool):
        if value:
            self.markers.add(marker)
        else:
            self.markers.discard(marker)

    def has_marker(self, marker: str) -> bool:
        return marker in self.markers

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["markers"] = sorted(self.markers)
        return d

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Token":
        d = dict(data)
        d["markers"] = set(d.get("markers", []))
        return Token(**d)

# -------------------------
# Events (what the host would broadcast to listeners)
# -------------------------
@dataclass
class ChatMessage:
    who: str
    content: str
    type: str = "general"   # general | whisper | api
    playerid: str = "API"
    rolltemplate: Optional[str] = None
    target: Optional[str] = None
    inlinerolls: List[Dict[str, Any]] = field(default_factory=list)

    def render(self) -> str:
        """Content with inline roll placeholders replaced by their totals."""
        def sub(m: "re.Match[str]") -> str:
            idx = int(m.group(1))
            if idx < len(self.inlinerolls):
                return str(self.inlinerolls[idx]["results"]["total"])
            return m.group(0)
        return _PLACEHOLDER_RE.sub(sub, self.content)


@dataclass
class CampaignChange:
    prop: str
    value: Any
    previous: Dict[str, Any]


Event = Union[ChatMessage, CampaignChange]

# -------------------------
# Inline roll resolution (stand-in for the host's roll engine)
# -------------------------
_ATTR_RE = re.compile(r"@\{([^|{}]+)\|([^{}]+)\}")
_INLINE_RE = re.compile(r"\[\[((?:(?!\[\[|\]\]).)*)\]\]")
_LABEL_RE = re.compile(r"\[[^\[\]]*\]")
_PENDING_RE = re.compile(r"\x00(\d+)\x00")
_PLACEHOLDER_RE = re.compile(r"\$\[\[(\d+)\]\]")
_TERM_RE = re.compile(r"([+-]?)(\d*)d(\d+)|([+-]?)(\d+(?:\.\d+)?)")
_TEMPLATE_RE = re.compile(r"&\{template:(\w+)\}")
_WHISPER_RE = re.compile(r"^\s*/w\s+(\S+)\s+")

# -------------------------
# Campaign
# -------------------------
class Campaign:
    def __init__(self, rng: Optional[random.Random] = None):
        self.characters: Dict[str, Character] = {}
        self.attributes: List[Attribute] = []
        self.tokens: Dict[str, Token] = {}
        self.playerpageid: str = "page1"
        # "" means the turn order has never been initialised
        self.turnorder: str = ""
        self.initiativepage: bool = False
        self.gm_ids: Set[str] = {"GM"}
        # persisted script state, one key per script
        self.state: Dict[str, Any] = {}
        self.pending: Deque[Event] = deque()
        self.rng = rng or random.Random()

    # ----- randomness -----
    def random_integer(self, maximum: int) -> int:
        return self.rng.randint(1, maximum)

    # ----- characters / attributes -----
    def add_character(self, char_id: str, name: str, controlledby: str = "") -> Character:
        if char_id in self.characters:
            raise DuplicateId(f"Character id '{char_id}' already exists")
        c = Character(id=char_id, name=name, controlledby=controlledby)
        self.characters[char_id] = c
        return c

    def get_character(self, char_id: str) -> Optional[Character]:
        if not char_id:
            return None
        return self.characters.get(char_id)

    def find_character_by_name(self, name: str) -> Optional[Character]:
        for c in self.characters.values():
            if c.name == name:
                return c
        return None

    def find_attribute(self, char_id: str, name: str) -> Optional[Attribute]:
        for a in self.attributes:
            if a.characterid == char_id and a.name == name:
                return a
        return None

    def set_attribute(self, char_id: str, name: str, value: Any) -> Attribute:
        if char_id not in self.characters:
            raise NotFound(f"Character '{char_id}' not found")
        a = self.find_attribute(char_id, name)
        if a is None:
            a = Attribute(characterid=char_id, name=name)
            self.attributes.append(a)
        a.current = str(value)
        return a

    # ----- tokens -----
    def add_token(self, token_id: str, name: str, represents: str = "", pageid: Optional[str] = None) -> Token:
        if token_id in self.tokens:
            raise DuplicateId(f"Token id '{token_id}' already exists")
        t = Token(id=token_id, name=name, pageid=pageid or self.playerpageid, represents=represents)
        self.tokens[token_id] = t
        return t

    def remove_token(self, token_id: str):
        if token_id not in self.tokens:
            raise NotFound(f"Token '{token_id}' not found")
        del self.tokens[token_id]

    def tokens_on_page(self, pageid: str) -> List[Token]:
        return [t for t in self.tokens.values() if t.pageid == pageid]

    # ----- players -----
    def player_is_gm(self, player_id: str) -> bool:
        return player_id.strip() in self.gm_ids

    def is_player(self, controlledby: str) -> bool:
        """True if at least one non-GM user controls the character."""
        if controlledby == "":
            return False
        return not all(self.player_is_gm(p) for p in controlledby.split(","))

    # ----- visibility -----
    def set_initiative_page(self, visible: bool):
        previous = {"initiativepage": self.initiativepage, "turnorder": self.turnorder}
        if bool(visible) == self.initiativepage:
            return
        self.initiativepage = bool(visible)
        self.pending.append(CampaignChange("initiativepage", self.initiativepage, previous))

    # ----- chat -----
    def send_chat(self, who: str, content: str) -> ChatMessage:
        """Post a message; attribute references and inline rolls are resolved
        the way the host would before listeners see it."""
        content = self._resolve_attributes(content)
        msg_type, target = "general", None
        m = _WHISPER_RE.match(content)
        if m:
            msg_type, target = "whisper", m.group(1)
            content = content[m.end():]
        tmpl = _TEMPLATE_RE.search(content)
        content, rolls = self._resolve_inline_rolls(content)
        msg = ChatMessage(
            who=who,
            content=content,
            type=msg_type,
            target=target,
            rolltemplate=tmpl.group(1) if tmpl else None,
            inlinerolls=rolls,
        )
        self.pending.append(msg)
        return msg

    def pending_events(self) -> Iterator[Event]:
        # events queued while one is being handled are picked up in the same drain
        while self.pending:
            yield self.pending.popleft()

    def post_api_command(self, content: str, playerid: str = "GM") -> ChatMessage:
        msg = ChatMessage(who=playerid, content=content, type="api", playerid=playerid)
        self.pending.append(msg)
        return msg

    def _resolve_attributes(self, content: str) -> str:
        def sub(m: "re.Match[str]") -> str:
            c = self.find_character_by_name(m.group(1))
            a = self.find_attribute(c.id, m.group(2)) if c else None
            return a.current if a else ""
        return _ATTR_RE.sub(sub, content)

    def _resolve_inline_rolls(self, content: str) -> Tuple[str, List[Dict[str, Any]]]:
        rolls: List[Dict[str, Any]] = []
        while True:
            m = _INLINE_RE.search(content)
            if not m:
                break
            expr = m.group(1)
            # nested rolls already resolved contribute their totals
            numeric = _PENDING_RE.sub(lambda p: str(rolls[int(p.group(1))]["results"]["total"]), expr)
            total = self._evaluate(_LABEL_RE.sub("", numeric))
            rolls.append({"expression": expr.strip(), "results": {"total": total}})
            content = content[:m.start()] + f"\x00{len(rolls) - 1}\x00" + content[m.end():]
        content = _PENDING_RE.sub(lambda p: f"$[[{p.group(1)}]]", content)
        return content, rolls

    def _evaluate(self, expr: str) -> Union[int, float]:
        total: Union[int, float] = 0
        for sign, count, sides, nsign, number in _TERM_RE.findall(expr.replace(" ", "")):
            if sides:
                if int(sides) < 1:
                    raise AutoInitError(f"Cannot roll a die with {sides} sides in '{expr.strip()}'")
                value = sum(self.random_integer(int(sides)) for _ in range(int(count or 1)))
                total += -value if sign == "-" else value
            else:
                value = float(number) if "." in number else int(number)
                total += -value if nsign == "-" else value
        if isinstance(total, float) and total.is_integer():
            return int(total)
        return total

    # ---------- persistence ----------
    def to_dict(self) -> Dict[str, Any]:
        return {
            "characters": {cid: c.to_dict() for cid, c in self.characters.items()},
            "attributes": [a.to_dict() for a in self.attributes],
            "tokens": {tid: t.to_dict() for tid, t in self.tokens.items()},
            "playerpageid": self.playerpageid,
            "turnorder": self.turnorder,
            "initiativepage": self.initiativepage,
            "gm_ids": sorted(self.gm_ids),
            "state": self.state,
        }

    def save(self, path: str):
        try:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=2)
        except (OSError, TypeError) as e:
            raise AutoInitError(f"Failed to save to '{path}': {e}")
        log.info("saved campaign to %s", path)

    def load(self, path: str):
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise AutoInitError(f"File not found: '{path}'")
        except (OSError, json.JSONDecodeError) as e:
            raise AutoInitError(f"Failed to load from '{path}': {e}")
        # parse everything before touching the table so a bad file changes nothing
        try:
            characters = {cid: Character.from_dict(cd) for cid, cd in data.get("characters", {}).items()}
            attributes = [Attribute.from_dict(ad) for ad in data.get("attributes", [])]
            tokens = {tid: Token.from_dict(td) for tid, td in data.get("tokens", {}).items()}
            gm_ids = set(data.get("gm_ids", ["GM"]))
            state = dict(data.get("state", {}))
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise AutoInitError(f"Invalid campaign file format in '{path}': {e}")
        self.characters = characters
        self.attributes = attributes
        self.tokens = tokens
        self.playerpageid = data.get("playerpageid", "page1")
        self.turnorder = data.get("turnorder", "")
        self.initiativepage = bool(data.get("initiativepage", False))
        self.gm_ids = gm_ids
        self.state = state
        self.pending.clear()
        log.info("loaded campaign from %s", path)
