## cli.py (desktop runner using the same commands)
# cli.py
import asyncio, shlex
from typing import List

from autoinit import AutoInitiative
from autoinit_commands import registry
from config import load_campaign, setup_logging

class CLICtx:
    async def send(self, message: str):
        print(message)

def parse(line: str) -> List[str]:
    try:
        return shlex.split(line)
    except ValueError as e:
        # Catch unclosed quotes or other shlex errors
        raise RuntimeError(f"Parse error: {e}")

async def run_line(line: str, ctx, app: AutoInitiative) -> bool:
    """Run one '!command' line. Returns False when the line was not a command."""
    if not line.startswith("!"):
        return False
    parts = parse(line[1:])
    if not parts:
        return False
    root, *args = parts
    await registry.run(root, args, ctx, app)
    return True

async def main():
    setup_logging()
    app = AutoInitiative(load_campaign())
    ctx = CLICtx()
    print(
        "AutoInitiative CLI. Type !help to see available commands\n"
        "Type 'exit' or 'quit' to leave."
    )
    while True:
        try:
            line = input("> ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\nbye")
            break

        if not line:
            continue
        if line in {"quit", "exit"}:
            break

        try:
            if not await run_line(line, ctx, app):
                print("Commands must start with '!'")
        except RuntimeError as e:
            print(f"❌ {e}")

def run():
    asyncio.run(main())

if __name__ == "__main__":
    run()
