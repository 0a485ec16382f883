"""Workspace-wide limits and defaults."""

# Field length limits
MAX_TITLE_LENGTH = 191

# Entity limits
MAX_COLUMNS_PER_WORKSPACE = 20
MAX_CARDS_PER_USER = 500
MAX_TOOLS_PER_SCOPE = 50
MAX_ROADMAP_NODES = 200

DEFAULT_COLUMN_TITLE = "To Do"

# Editing lease
DEFAULT_LOCK_TIMEOUT_SECONDS = 60

# Rate limiting
DEFAULT_RATE_LIMIT_WINDOW_SECONDS = 60
DEFAULT_RATE_LIMIT_MAX_REQUESTS = 100
