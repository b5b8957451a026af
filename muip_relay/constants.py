"""Constants used across the muip-relay package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "muip-relay"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / APP_NAME / DEFAULT_CONFIG_FILENAME

DEFAULT_DISPATCH_URL = "http://127.0.0.1:443"
DEFAULT_KEY_TYPE = "PEM"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 10.0

DEFAULT_SERVER_HOST = "0.0.0.0"
DEFAULT_SERVER_PORT = 3000

# Remote dispatch (MUIP) endpoints
CREATE_SESSION_PATH = "/muip/create_session"
AUTH_ADMIN_PATH = "/muip/auth_admin"
EXEC_CMD_PATH = "/muip/exec_cmd"
SERVER_INFORMATION_PATH = "/muip/server_information"
PLAYER_INFORMATION_PATH = "/muip/player_information"

DEFAULT_RATE_WINDOW_MS = 1000
DEFAULT_RATE_MAX_REQUESTS = 2
DEFAULT_RATE_BLOCK_MS = 30000
DEFAULT_RATE_MAX_ENTRIES = 10000
DEFAULT_RATE_IDLE_MS = 300000
DEFAULT_RATE_CLEANUP_INTERVAL = 100

RATE_LIMITED_MESSAGE = "Request rate too high, please retry later"
