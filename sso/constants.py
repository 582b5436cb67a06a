from __future__ import annotations

import logging

LOGGER = logging.getLogger("sso")

DEFAULT_STATE_TTL_SECONDS = 300
DEFAULT_MAX_RETRIES = 3
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_SESSION_IDLE_SECONDS = 1800
MAX_OUTSTANDING_STATES = 10
SESSION_SWEEP_INTERVAL_SECONDS = 60

SESSION_COOKIE_NAME = "SSOSESSION"

# Keys probed, in order, for the subject id of a user-info document.
PRINCIPAL_KEYS = ("user", "username", "userid", "user_id", "login", "id", "name")
