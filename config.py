# config.py
import logging
import os
from typing import Optional

from campaign import Campaign

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
TOKEN_FILE = "bot_token.txt"

def setup_logging(level: Optional[str] = None) -> None:
    """One stream handler on the root logger; level from AUTOINIT_LOG_LEVEL (default INFO)."""
    name = (level or os.getenv("AUTOINIT_LOG_LEVEL") or "INFO").upper()
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, "%Y-%m-%d %H:%M:%S"))
        root.addHandler(handler)
    root.setLevel(getattr(logging, name, logging.INFO))

# --- Token loading ---
def load_token(path: str = TOKEN_FILE) -> str:
    """
    Load the Discord bot token.
    Priority:
      1. Environment variable DISCORD_TOKEN
      2. 'bot_token.txt' file (ignored in git)
    """
    token = os.getenv("DISCORD_TOKEN")
    if token and token.strip():
        return token.strip()

    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            line = f.readline().strip()
            if line:
                return line

    raise RuntimeError(
        "❌ Discord token not found. Set DISCORD_TOKEN environment variable "
        f"or create a '{path}' file containing your token."
    )

def load_campaign() -> Campaign:
    """A fresh campaign, or the one named by AUTOINIT_CAMPAIGN when set."""
    campaign = Campaign()
    path = os.getenv("AUTOINIT_CAMPAIGN")
    if path and os.path.exists(path):
        campaign.load(path)
    return campaign
