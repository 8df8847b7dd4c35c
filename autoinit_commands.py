## autoinit_commands.py (framework-agnostic commands + registry)
# autoinit_commands.py
from __future__ import annotations
from typing import Callable, Dict, List, Optional, Protocol, Any, Tuple
import logging

from campaign import AutoInitError, NotFound, ChatMessage, Token
from autoinit import AutoInitiative, COMMAND_NAME, INIT_ATTRIBUTE

log = logging.getLogger(__name__)

# ---- Context abstraction -----------------------------------------------------
class ReplyContext(Protocol):
    async def send(self, message: str) -> None: ...

# ---- Command registry --------------------------------------------------------
Handler = Callable[[ReplyContext, List[str], AutoInitiative], Any]

class CommandRegistry:
    def __init__(self):
        self._handlers: Dict[str, Handler] = {}
        # help metadata: {root: {"usage": str, "desc": str, "subs": {sub: {"usage": str, "desc": str}}}}
        self._help: Dict[str, Dict[str, Any]] = {}

    def command(self, name: str, *, usage: Optional[str] = None, desc: Optional[str] = None):
        def deco(fn: Handler):
            self._handlers[name] = fn
            meta = self._help.setdefault(name, {"usage": None, "desc": None, "subs": {}})
            if usage:
                meta["usage"] = usage
            if desc:
                meta["desc"] = desc
            return fn
        return deco

    def annotate_sub(self, root: str, *subs: str, usage: str, desc: Optional[str] = None):
        meta = self._help.setdefault(root, {"usage": None, "desc": None, "subs": {}})
        for sub in subs:
            meta["subs"][sub] = {"usage": usage, "desc": (desc or "")}

    def roots(self) -> List[str]:
        return sorted(self._handlers.keys())

    def help_for(self, path: List[str]) -> Tuple[str, str]:
        """
        Returns (title, text) for a given help path:
        [] => all commands
        [root] => command details + subcommands
        [root, sub] => specific subcommand
        """
        if not path:
            lines = ["**Commands**"]
            for root in self.roots():
                m = self._help.get(root, {})
                usage = m.get("usage") or f"!{root}"
                desc = m.get("desc") or ""
                lines.append(f"`{usage}` — {desc}".rstrip())
            return ("Help", "\n".join(lines))
        root = path[0]
        if root not in self._handlers:
            return ("Help", f"Unknown command `{root}`. Try `!help`.")
        meta = self._help.get(root, {"subs": {}})
        if len(path) == 1:
            usage = meta.get("usage") or f"!{root}"
            desc = meta.get("desc") or ""
            lines = [f"**!{root}**", f"Usage: `{usage}`"]
            if desc:
                lines.append(desc)
            subs = meta.get("subs") or {}
            if subs:
                lines.append("\n**Subcommands**")
                for s, sm in sorted(subs.items()):
                    lines.append(f"- `{sm['usage']}` — {sm.get('desc','')}".rstrip())
            return (f"Help: {root}", "\n".join(lines))
        sub = path[1]
        sm = (meta.get("subs") or {}).get(sub)
        if not sm:
            return (f"Help: {root}", f"No help found for `{root} {sub}`.")
        lines = [f"**!{root} {sub}**", f"Usage: `{sm['usage']}`"]
        if sm.get("desc"):
            lines.append(sm["desc"])
        return (f"Help: {root} {sub}", "\n".join(lines))

    async def run(self, name: str, args: List[str], ctx: ReplyContext, app: AutoInitiative):
        h = self._handlers.get(name)
        if not h:
            await ctx.send(f"❓ Unknown command `{name}`")
            return
        try:
            result = await h(ctx, args, app)
            # deliver whatever the command caused on the table (rolls, whispers, visibility changes)
            for msg in app.pump():
                line = chat_line(msg)
                if line:
                    await ctx.send(line)
            return result
        except AutoInitError as e:
            await ctx.send(f"❌ {e}")
        except Exception as e:
            log.exception("command %s failed", name)
            await ctx.send(f"💥 Unexpected error: {e}")

registry = CommandRegistry()

# ---- Helpers ----------------------------------------------------------------

def chat_line(msg: ChatMessage) -> Optional[str]:
    if msg.type == "api":
        return None
    prefix = f"*(to {msg.target})* " if msg.type == "whisper" else ""
    return f"{prefix}**{msg.who}**: {msg.render()}"

def _token_line(app: AutoInitiative, t: Token) -> str:
    c = app.host.get_character(t.represents)
    rep = f"{c.name} (`{c.id}`)" if c else "(nothing)"
    markers = ", ".join(sorted(t.markers)) or "none"
    return f"`{t.id}` **{t.name}** represents {rep} on `{t.pageid}` markers: {markers}"

def _turn_lines(app: AutoInitiative) -> List[str]:
    lines = []
    for e in app.turn_order.entries():
        t = app.host.tokens.get(e.id)
        name = t.name if t else (e.custom or e.id)
        lines.append(f"{e.pr:>4} **{name}** (`{e.id}`)")
    return lines

#boilerplate code for returning if not enough arguments for a command/subcommand were sent
async def return_help_if_not_enough_args(
    ctx: ReplyContext,
    args: List[str],
    required: int,
    command: str,
    subcommand: str | None = None,
) -> bool:
    """
    Return True if help was sent because not enough args were given.
    """
    if len(args) < required:
        keys = [command] + ([subcommand] if subcommand else [])
        title, body = registry.help_for(keys)
        await ctx.send(f"**{title}**\n{body}")
        return True
    return False

# ---- Commands ----------------------------------------------------------------
@registry.command("autoinit", usage="!autoinit [--option arg ...]", desc="Show or change AutoInitiative settings, clear markers, recover the last turn order.")
async def autoinit_cmd(ctx: ReplyContext, args: List[str], app: AutoInitiative):
    # replies come back as GM whispers through the table chat
    app.host.post_api_command(" ".join([COMMAND_NAME] + args))
registry.annotate_sub("autoinit", "--enable", usage="!autoinit --enable <true|false>", desc="Enable or disable rolling when the turn order opens.")
registry.annotate_sub("autoinit", "--group", usage="!autoinit --group <true|false>", desc="Group tokens sharing name and character under one roll.")
registry.annotate_sub("autoinit", "--output", usage="!autoinit --output <true|false>", desc="Send rolls to chat instead of rolling silently.")
registry.annotate_sub("autoinit", "--players", usage="!autoinit --players <true|false>", desc="Also roll for player-controlled characters.")
registry.annotate_sub("autoinit", "--max", usage="!autoinit --max <n|none>", desc="Maximum tokens per group (2 or more); bigger groups are split into marker-coded subgroups.")
registry.annotate_sub("autoinit", "--clear", usage="!autoinit --clear", desc="Remove color markers from every token on the player page.")
registry.annotate_sub("autoinit", "--recover", usage="!autoinit --recover", desc="Restore the turn order as it was when last closed.")

@registry.command("char", usage="!char <subcommand> ...", desc="Manage characters and their attributes.")
async def char_cmd(ctx: ReplyContext, args: List[str], app: AutoInitiative):
    host = app.host
    if not args or args[0].lower() == "list":
        if not host.characters:
            return await ctx.send("No characters. Create one with `!char add <id> <name>`.")
        lines = []
        for c in host.characters.values():
            attr = host.find_attribute(c.id, INIT_ATTRIBUTE)
            bonus = attr.current if attr else "-"
            owner = c.controlledby or "GM"
            lines.append(f"`{c.id}` **{c.name}** init {bonus} (controlled by {owner})")
        return await ctx.send("Characters:\n" + "\n".join(lines))
    sub = args[0].lower()
    if sub == "add":
        if await return_help_if_not_enough_args(ctx, args, 3, "char", "add"):
            return
        controlledby = args[3] if len(args) >= 4 else ""
        c = host.add_character(args[1], args[2], controlledby)
        return await ctx.send(f"Added character **{c.name}** (`{c.id}`).")
    if sub == "attr":
        if await return_help_if_not_enough_args(ctx, args, 4, "char", "attr"):
            return
        a = host.set_attribute(args[1], args[2], args[3])
        return await ctx.send(f"`{args[1]}`.{a.name} = {a.current}")
    title, body = registry.help_for(["char"])
    return await ctx.send(f"**{title}**\n{body}")
registry.annotate_sub("char", "list", usage="!char list", desc="List characters with their initiative bonus.")
registry.annotate_sub("char", "add", usage="!char add <id> <name> [controlledby]", desc="Create a character; controlledby is a comma separated list of user ids or 'all'.")
registry.annotate_sub("char", "attr", usage="!char attr <id> <name> <value>", desc=f"Set an attribute, e.g. `{INIT_ATTRIBUTE}`.")

@registry.command("token", usage="!token <subcommand> ...", desc="Place, remove and list tokens.")
async def token_cmd(ctx: ReplyContext, args: List[str], app: AutoInitiative):
    host = app.host
    if not args or args[0].lower() == "list":
        tokens = list(host.tokens.values())
        if not tokens:
            return await ctx.send("(no tokens)")
        return await ctx.send("Tokens:\n" + "\n".join(_token_line(app, t) for t in tokens))
    sub = args[0].lower()
    if sub == "add":
        if await return_help_if_not_enough_args(ctx, args, 4, "token", "add"):
            return
        char_id = args[3]
        if host.get_character(char_id) is None:
            raise NotFound(f"Character '{char_id}' not found.")
        page = args[4] if len(args) >= 5 else None
        t = host.add_token(args[1], args[2], represents=char_id, pageid=page)
        return await ctx.send(f"Placed `{t.id}` **{t.name}** on `{t.pageid}`.")
    if sub in ("remove", "del", "rm"):
        if await return_help_if_not_enough_args(ctx, args, 2, "token", "remove"):
            return
        host.remove_token(args[1])
        return await ctx.send(f"Removed `{args[1]}`.")
    title, body = registry.help_for(["token"])
    return await ctx.send(f"**{title}**\n{body}")
registry.annotate_sub("token", "list", usage="!token list", desc="List tokens with their markers.")
registry.annotate_sub("token", "add", usage="!token add <id> <name> <char_id> [page]", desc="Place a token representing a character; defaults to the player page.")
registry.annotate_sub("token", "remove", usage="!token remove <id>", desc="Remove a token. Alt aliases: del, rm.")

@registry.command("page", usage="!page [page_id]", desc="Show or move the player page.")
async def page_cmd(ctx: ReplyContext, args: List[str], app: AutoInitiative):
    if args:
        app.host.playerpageid = args[0]
    return await ctx.send(f"Player page is `{app.host.playerpageid}`.")

@registry.command("turnorder", usage="!turnorder | !turnorder open | !turnorder close", desc="Show, open or close the turn order.")
async def turnorder_cmd(ctx: ReplyContext, args: List[str], app: AutoInitiative):
    sub = args[0].lower() if args else "show"
    if sub == "open":
        app.host.set_initiative_page(True)
        return await ctx.send("Turn order opened.")
    if sub == "close":
        app.host.set_initiative_page(False)
        return await ctx.send("Turn order closed.")
    if sub == "show":
        state = "open" if app.host.initiativepage else "closed"
        lines = _turn_lines(app)
        return await ctx.send(f"Turn order ({state}):\n" + ("\n".join(lines) or "(empty)"))
    title, body = registry.help_for(["turnorder"])
    return await ctx.send(f"**{title}**\n{body}")
registry.annotate_sub("turnorder", "open", usage="!turnorder open", desc="Open the turn order; rolls initiative when AutoInitiative is enabled.")
registry.annotate_sub("turnorder", "close", usage="!turnorder close", desc="Close the turn order; it can be restored with `!autoinit --recover`.")

@registry.command("store", usage="!store save <path> | !store load <path>", desc="Save/load the campaign, including settings.")
async def store_cmd(ctx: ReplyContext, args: List[str], app: AutoInitiative):
    if not args:
        title, body = registry.help_for(["store"])
        return await ctx.send(f"**{title}**\n{body}")
    sub = args[0].lower()
    if sub == "save":
        if await return_help_if_not_enough_args(ctx, args, 2, "store", "save"):
            return
        app.host.save(args[1]); return await ctx.send(f"Saved to `{args[1]}`")
    if sub == "load":
        if await return_help_if_not_enough_args(ctx, args, 2, "store", "load"):
            return
        app.host.load(args[1]); return await ctx.send(f"Loaded from `{args[1]}`")
    title, body = registry.help_for(["store"])
    return await ctx.send(f"**{title}**\n{body}")
registry.annotate_sub("store", "save", usage="!store save <path>", desc="Save the campaign to a JSON file.")
registry.annotate_sub("store", "load", usage="!store load <path>", desc="Load the campaign from a JSON file.")

# ---- Automated Help command ---------------------------------------------------
@registry.command("help", usage="!help [command [sub]]", desc="Show command usage. Try `!help autoinit` or `!help token add`.")
async def help_cmd(ctx: ReplyContext, args: List[str], app: AutoInitiative):
    title, body = registry.help_for(args)
    await ctx.send(f"**{title}**\n{body}")
