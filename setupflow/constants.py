"""Shared constants for setupflow."""

HISTORY_LIMIT = 50
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0
STEP_ID_PATTERN = r"^[a-z][a-z0-9-]*$"
