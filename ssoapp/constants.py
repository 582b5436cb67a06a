from __future__ import annotations

import logging
from pathlib import Path

LOGGER = logging.getLogger("ssoapp")
APP_VERSION = "0.1.0"
AUTH_MODE = "oauth2-sso"

ENV_FILE = Path(__file__).resolve().parent.parent / ".env"

DEFAULT_PROTECTED_PATHS = ("/user",)
