# billing_api/config.py
"""
Runtime settings, read once from the environment (and an optional .env file).
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


DB_URL = os.getenv("BILLING_DB_URL", "sqlite:///db.sqlite")  # file in project root

LOG_LEVEL = os.getenv("BILLING_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"

# Create missing tables when the app starts
CREATE_SCHEMA = _flag("BILLING_CREATE_SCHEMA", "true")

# Read-modify-write attempts before a concurrent bill update gives up
WRITE_RETRIES = int(os.getenv("BILLING_WRITE_RETRIES", "3"))

DEFAULT_PAGE_SIZE = int(os.getenv("BILLING_DEFAULT_PAGE_SIZE", "10"))
MAX_PAGE_SIZE = int(os.getenv("BILLING_MAX_PAGE_SIZE", "100"))

ADMIN_ROLE = os.getenv("BILLING_ADMIN_ROLE", "Admin")
DEFAULT_ROLE = "User"
