"""
Runtime configuration for the FertiSense recommendation backend.

Values come from environment variables so the same build can run against the
hosted API, a local mock server, or fully offline.
"""
import os

FERTISENSE_API_BASE_URL = os.environ.get(
    "FERTISENSE_API_BASE_URL", "https://fertisense-backend.onrender.com"
).rstrip("/")
FERTISENSE_API_TOKEN = os.environ.get("FERTISENSE_API_TOKEN")

API_TIMEOUT_SECONDS = float(os.environ.get("FERTISENSE_API_TIMEOUT_SECONDS", "15"))
PRICE_TIMEOUT_SECONDS = float(os.environ.get("FERTISENSE_PRICE_TIMEOUT_SECONDS", "3"))

DATABASE_URL = os.environ.get("FERTISENSE_DATABASE_URL", "sqlite:///./fertisense.db")

DEFAULT_RULE_SET = os.environ.get("FERTISENSE_RULE_SET", "DA_RICE_V1")

SESSION_BUCKET_SECONDS = int(os.environ.get("FERTISENSE_SESSION_BUCKET_SECONDS", "300"))
HISTORY_LIMIT = int(os.environ.get("FERTISENSE_HISTORY_LIMIT", "50"))

LOG_LEVEL = os.environ.get("FERTISENSE_LOG_LEVEL", "INFO").upper()
