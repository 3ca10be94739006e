import os


def _default_sqlite_url() -> str:
    data_dir = "/data"
    if os.path.isdir(data_dir):
        return f"sqlite:////{os.path.join(data_dir.lstrip('/'), 'taskpoints.db')}"
    return "sqlite:///taskpoints.db"


DATABASE_URL = os.getenv("DATABASE_URL", _default_sqlite_url())

# Bearer tokens are signed with this secret; rotate it to invalidate every session.
TOKEN_SECRET = os.getenv("TOKEN_SECRET", "dev-secret")
TOKEN_MAX_AGE = int(os.getenv("TOKEN_MAX_AGE", str(60 * 60 * 24 * 30)))

# Recurring tasks reset at midnight in this zone.
LOCAL_TIMEZONE = os.getenv("LOCAL_TIMEZONE", "UTC")

HISTORY_PAGE_SIZE = int(os.getenv("HISTORY_PAGE_SIZE", "20"))
HISTORY_MAX_PAGE_SIZE = 100

ROOT_USERNAME = os.getenv("ROOT_USERNAME", "admin")
ROOT_PASSWORD = os.getenv("ROOT_PASSWORD", "admin")
ROOT_FULL_NAME = os.getenv("ROOT_FULL_NAME", "Administrator")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR")
