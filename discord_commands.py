## discord_commands.py (thin Discord adapter)

# discord_commands.py
import logging
import shlex
from discord.ext import commands

from autoinit import AutoInitiative
from autoinit_commands import registry

log = logging.getLogger(__name__)

DEBUG_CMDS_CHAT = False   # set True to also echo minimal info into Discord

def _dbg(ctx, **kv):
    if not log.isEnabledFor(logging.DEBUG):
        return
    who = f"g={getattr(getattr(ctx, 'guild', None), 'id', 'DM')} ch={getattr(getattr(ctx, 'channel', None), 'id', '?')}"
    log.debug("[CMDDBG] %s %s", who, kv)

async def _dbg_chat(ctx, text: str):
    if DEBUG_CMDS_CHAT:
        await ctx.send(f"DBG: {text}")

# Max commands to run from a single paste to avoid accidental spam
BATCH_MAX_LINES = 200

def _is_comment_or_blank(line: str) -> bool:
    s = (line or "").strip()
    return not s or s.startswith("#")

def _strip_prefix(line: str, prefix: str) -> str:
    s = line.lstrip()
    if prefix and s.startswith(prefix):
        s = s[len(prefix):].lstrip()
    return s

def _split_args(s: str, bound_root: str) -> list:
    """Drop the command root from the message tail and split the rest."""
    if s[:len(bound_root)].lower() == bound_root.lower():
        s = s[len(bound_root):].lstrip()
    else:
        parts = s.split(maxsplit=1)
        s = parts[1] if len(parts) > 1 else ""
    return shlex.split(s)

async def _parse_and_run_single_line(ctx, line: str, app: AutoInitiative, known_roots) -> bool:
    """
    Returns True if it executed something, False if skipped.
    """
    prefix = getattr(ctx, "prefix", "")
    s = _strip_prefix(line, prefix)
    try:
        parts = shlex.split(s)
    except ValueError as e:
        _dbg(ctx, batch_parse_error=str(e), line=line)
        await ctx.send(f"❌ Parse error in line: `{line}`\n→ {e}")
        return False
    if not parts:
        _dbg(ctx, batch_skip="empty_after_strip", line=line)
        return False

    root = parts[0]
    # If the line didn't have '!' and the first token isn't a known root, skip
    if not line.strip().startswith(prefix) and root not in known_roots:
        _dbg(ctx, batch_skip="not_a_root", line=line, first_token=root)
        return False

    args = parts[1:]
    _dbg(ctx, batch_exec_line=line, parsed_root=root, parsed_args=args)
    await registry.run(root, args, DiscordCtxWrapper(ctx), app)
    return True


class DiscordCtxWrapper:
    def __init__(self, ctx):
        self._ctx = ctx
    async def send(self, message: str):
        await self._ctx.send(message)

#supports multiple commands in one message - one command per line
def wire_commands(bot: commands.Bot, app: AutoInitiative):
    async def _dispatch(ctx, bound_root: str):
        content = ctx.message.content or ""

        lines = [ln for ln in content.splitlines() if not _is_comment_or_blank(ln)]
        if len(lines) > 1:
            known_roots = set(registry.roots())
            _dbg(ctx, batch_detected=True, line_count=len(lines))
            if len(lines) > BATCH_MAX_LINES:
                await ctx.send(f"⚠️ Paste has {len(lines)} lines; max allowed is {BATCH_MAX_LINES}. Aborting.")
                return
            executed = 0
            for line in lines:
                ok = await _parse_and_run_single_line(ctx, line, app, known_roots)
                executed += int(ok)
            _dbg(ctx, batch_done=True, executed=executed, total=len(lines))
            await _dbg_chat(ctx, f"batch executed {executed}/{len(lines)} lines")
            return

        s = _strip_prefix(content, getattr(ctx, "prefix", ""))
        try:
            args = _split_args(s, bound_root)
        except ValueError as e:
            _dbg(ctx, parse_error=str(e), raw_tail=s)
            return await ctx.send(f"❌ Parse error: {e}")

        _dbg(ctx, bound_root=bound_root, final_args=args)
        await _dbg_chat(ctx, f"root={bound_root} args={args}")
        await registry.run(bound_root, args, DiscordCtxWrapper(ctx), app)

    # the registry defines its own help
    if bot.get_command("help"):
        bot.remove_command("help")

    # --- factory to avoid late-binding bugs in a loop ---
    def register_one(root: str):
        async def _cmd(ctx):
            _dbg(ctx, entry="_cmd", bound_root=root)
            await _dispatch(ctx, root)
        bot.command(name=root, ignore_extra=True)(_cmd)

    for root in registry.roots():
        if bot.get_command(root):
            bot.remove_command(root)
        register_one(root)
