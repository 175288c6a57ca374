"""Runtime configuration read from environment variables."""
import os
from pathlib import Path

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./health_passport.db")

# Base used to build the shareable reference URL of a passport
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")

# Demo credentials
ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin1")

PASSPORT_TTL_HOURS = int(os.getenv("PASSPORT_TTL_HOURS", "24"))

# PNG rendering of the identity matrix
CODE_BOX_SIZE = int(os.getenv("CODE_BOX_SIZE", "10"))
CODE_BORDER = int(os.getenv("CODE_BORDER", "4"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

STATIC_DIR = os.getenv("STATIC_DIR", str(Path(__file__).resolve().parent.parent / "static"))
