import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Base directory of the project (parent of 'idara')
BASE_DIR = Path(__file__).resolve().parent.parent.parent

# Database Directory
DB_DIR = BASE_DIR / "db"

DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite+aiosqlite:///{DB_DIR / 'idara.db'}")
SQL_DEBUG = os.getenv("SQL_DEBUG", "false").lower() == "true"

# Application
APP_NAME = "Idara OS"
APP_VERSION = "1.0.0"
APP_URL = os.getenv("APP_URL", "").rstrip("/")
ENABLE_DOCS = os.getenv("ENABLE_DOCS", "true").lower() == "true"
ENABLE_HSTS = os.getenv("ENABLE_HSTS", "false").lower() == "true"
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Cookies
COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false").lower() == "true"
COOKIE_DOMAIN = os.getenv("COOKIE_DOMAIN") or None

# Hosts / CORS
TRUSTED_HOSTS = [h.strip() for h in os.getenv("TRUSTED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]

# Bootstrap
DEFAULT_ORG_NAME = os.getenv("DEFAULT_ORG_NAME", "Idara OS")
DEFAULT_ADMIN_EMAIL = os.getenv("DEFAULT_ADMIN_EMAIL", "admin@example.com")

# Secrets at rest (Fernet key, urlsafe base64). Derived from JWT secret when unset.
ENCRYPTION_KEY = os.getenv("ENCRYPTION_KEY")

# Microsoft identity platform / Graph
MICROSOFT_LOGIN_URL = os.getenv("MICROSOFT_LOGIN_URL", "https://login.microsoftonline.com").rstrip("/")
GRAPH_BASE_URL = os.getenv("GRAPH_BASE_URL", "https://graph.microsoft.com/v1.0").rstrip("/")
GRAPH_TIMEOUT_SECONDS = float(os.getenv("GRAPH_TIMEOUT_SECONDS", "30"))


def get_cors_allow_origins() -> list[str]:
    """Origins allowed to make credentialed cross-site requests."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "http://localhost:3000")
    return [o.strip() for o in raw.split(",") if o.strip()]


# Ensure DB directory exists
os.makedirs(DB_DIR, exist_ok=True)
