"""Central configuration for paths and constants."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Data directory, override with OCEPA_TUTOR_DATA_DIR env var
DATA_DIR = Path(
    os.environ.get("OCEPA_TUTOR_DATA_DIR", str(Path.home() / ".ocepa_tutor"))
)

# Local persistence
SQLITE_PATH = DATA_DIR / "sessions.db"
STORAGE_KEY = "chatSessions"

# Conversation titles
DEFAULT_TITLE = "New Chat"
TITLE_MAX_CHARS = 35
TITLE_ELLIPSIS = "..."

# Appended to the model reply when the request fails
ERROR_FRAGMENT = (
    "\n\nSorry, I encountered an error while processing your request. Please try again."
)

# Client side
PROXY_ENDPOINT = os.environ.get("OCEPA_TUTOR_ENDPOINT", "http://127.0.0.1:8888/api/chat")
STREAM_RESPONSES = os.environ.get("OCEPA_TUTOR_STREAM", "1").lower() not in {"0", "false", "no"}

# Proxy side
API_KEY = os.environ.get("API_KEY") or os.environ.get("GOOGLE_API_KEY")
GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-2.5-flash")
PROXY_PATH = os.environ.get("OCEPA_TUTOR_PROXY_PATH", "/api/chat")
PROXY_HOST = os.environ.get("OCEPA_TUTOR_HOST", "127.0.0.1")
PROXY_PORT = int(os.environ.get("OCEPA_TUTOR_PORT", "8888"))
