"""Constants for LitRev."""

from pathlib import Path

from litrev import __version__

# Application constants
APP_NAME = "litrev"
APP_VERSION = __version__

# Default paths
DEFAULT_LOG_DIR = ".logs"
DEFAULT_CONFIG_FILE = "litrev.yaml"

# Config file locations (in order of priority)
CONFIG_LOCATIONS = [
    Path.cwd() / DEFAULT_CONFIG_FILE,
    Path.home() / ".config" / APP_NAME / "config.yaml",
]

# Environment variable holding comma-separated Gemini API keys
DEFAULT_API_KEYS_ENV = "GEMINI_API_KEYS"

# Filtering defaults
DEFAULT_BATCH_SIZE = 20
DEFAULT_MAX_CONCURRENT_BATCHES = 5
DEFAULT_TIMEOUT_MS = 30000
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_TEMPERATURE = 0.3
DEFAULT_FALLBACK_STRATEGY = "rule_based"

# Draft generation defaults
DEFAULT_PAPER_BATCH_SIZE = 15

# Retry / health defaults
DEFAULT_RATE_LIMIT_COOLDOWN = 90  # seconds
DEFAULT_BACKOFF_BASE = 1.0  # seconds
DEFAULT_BACKOFF_MAX = 30.0  # seconds
DEFAULT_ESCALATION_THRESHOLD_PCT = 0.0

# Usage ledger
USAGE_HISTORY_DAYS = 7
RATE_WINDOW_SECONDS = 60  # sliding window for requests/tokens per minute
DEFAULT_KEY_LABEL = "Unknown"

# Rough token estimate when the provider reports no usage
CHARS_PER_TOKEN = 4

DEFAULT_MODEL = "gemini-2.5-flash-lite"

# Per-model quota limits (free tier): tier, requests/min, tokens/min, requests/day
MODEL_QUOTAS: dict[str, dict[str, int]] = {
    "gemini-2.0-flash-lite": {"tier": 0, "rpm": 30, "tpm": 1_000_000, "rpd": 200},
    "gemini-2.5-flash-lite": {"tier": 0, "rpm": 15, "tpm": 250_000, "rpd": 1000},
    "gemini-2.0-flash": {"tier": 1, "rpm": 15, "tpm": 1_000_000, "rpd": 200},
    "gemini-2.5-flash": {"tier": 1, "rpm": 10, "tpm": 250_000, "rpd": 250},
    "gemini-2.5-pro": {"tier": 2, "rpm": 2, "tpm": 125_000, "rpd": 50},
    "gemini-3-pro-preview": {"tier": 3, "rpm": 5, "tpm": 250_000, "rpd": 100},
}

# Limits assumed for models missing from MODEL_QUOTAS
UNKNOWN_MODEL_QUOTA: dict[str, int] = {"tier": 1, "rpm": 2, "tpm": 125_000, "rpd": 50}

# Model priority chains per task
SEMANTIC_FILTERING_CHAIN = [
    "gemini-2.5-flash-lite",
    "gemini-2.0-flash-lite",
    "gemini-2.5-flash",
    "gemini-2.0-flash",
    "gemini-2.5-pro",
]

DRAFT_GENERATION_CHAIN = [
    "gemini-3-pro-preview",
    "gemini-2.5-pro",
    "gemini-2.5-flash",
    "gemini-2.0-flash",
    "gemini-2.5-flash-lite",
]

# Draft sections, in output order
DRAFT_SECTIONS = (
    "abstract",
    "introduction",
    "methodology",
    "results",
    "discussion",
    "conclusion",
)
