import os
import dotenv
import logging

dotenv.load_dotenv()

APP_URL = os.environ.get("THEMIS_APP_URL", "http://localhost:3000")

DB_PATH = os.environ.get("THEMIS_DB_PATH", "themis.sqlite3")

DISKCACHE_DIR = os.environ.get("DISKCACHE_DIR", ".themis-cache")

API_KEYS = os.environ.get("THEMIS_API_KEYS")
if API_KEYS is not None:
    API_KEYS = [key.strip() for key in API_KEYS.split(",") if key.strip()]

SESSION_COOKIE = os.environ.get("SESSION_COOKIE", "themis_session")

GITHUB_PRIVATE_KEY = os.environ.get("GITHUB_PRIVATE_KEY")
GITHUB_APP_ID = os.environ.get("GITHUB_APP_ID")
if GITHUB_APP_ID is not None:
    GITHUB_APP_ID = int(GITHUB_APP_ID)

GITHUB_INSTALLATION_ID = os.environ.get("GITHUB_INSTALLATION_ID")
if GITHUB_INSTALLATION_ID is not None:
    GITHUB_INSTALLATION_ID = int(GITHUB_INSTALLATION_ID)

OVERRIDE_LOGGING = logging.getLevelName(os.environ.get("OVERRIDE_LOGGING", "WARNING"))

TELEGRAM_TOKEN = os.environ.get("TELEGRAM_TOKEN")
TELEGRAM_CHAT_ID = os.environ.get("TELEGRAM_CHAT_ID")

ANALYZER_URL = os.environ.get("ANALYZER_URL")

ANALYZER_TIMEOUT = float(os.environ.get("ANALYZER_TIMEOUT", 600))

WORKER_SLEEP = float(os.environ.get("WORKER_SLEEP", 1))

WORKER_BATCH_SIZE = int(os.environ.get("WORKER_BATCH_SIZE", 5))

WORKER_IN_PROCESS = os.environ.get("WORKER_IN_PROCESS", "true") == "true"

INSTALLATION_CACHE_TTL = float(os.environ.get("INSTALLATION_CACHE_TTL", 300))

STATS_CACHE_TTL = float(os.environ.get("STATS_CACHE_TTL", 30))

NOTIFY_PROVIDER = os.environ.get("NOTIFY_PROVIDER")
