"""Static configuration for wareact.

All user-editable settings (groups, filters, reactions, bridge, logging) live
in a single JSON file for quick edits without touching Python. Secrets stay
in ``.env``.
"""

import json
import os

from dotenv import load_dotenv

from core.config import build_filter_config, build_pacing_config

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

load_dotenv()

CONFIG_PATH = os.getenv("WAREACT_CONFIG") or os.path.join(PROJECT_ROOT, "config.json")


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Group name fragments and sender rules. Fragments are matched as
# case/accent-insensitive substrings of the group subject.
FILTERS = build_filter_config(_CONFIG.get("groups", []), _CONFIG.get("filters", {}))

# Reaction emoji and the random delay window; bad bounds are corrected.
PACING = build_pacing_config(_CONFIG.get("reactions", {}))

# Control surface. API_TOKEN is optional; without it every endpoint is open.
_http = _CONFIG.get("http", {})
HTTP_ENABLED = bool(_http.get("enabled", True))
HTTP_HOST = str(_http.get("host", "0.0.0.0"))
HTTP_PORT = int(os.getenv("PORT") or _http.get("port", 3000))
API_TOKEN = os.getenv("API_TOKEN", "")

# Bridge connection. The token is shared with the bridge process.
_bridge = _CONFIG.get("bridge", {})
BRIDGE_URL = os.getenv("BRIDGE_URL") or _bridge.get("url", "ws://127.0.0.1:3001")
BRIDGE_TOKEN = os.getenv("BRIDGE_TOKEN", "")
BRIDGE_COMMAND_TIMEOUT_S = float(_bridge.get("command_timeout_s", 20))
RECONNECT_INITIAL_MS = int(_bridge.get("reconnect_initial_ms", 1000))
RECONNECT_MAX_MS = int(_bridge.get("reconnect_max_ms", 30000))
RECONNECT_FACTOR = float(_bridge.get("reconnect_factor", 2.0))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
