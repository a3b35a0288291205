"""Configuration for the chat service."""

import os

from dotenv import load_dotenv

# Local env files (never commit these).
load_dotenv(dotenv_path=".env.local", override=False)
load_dotenv(dotenv_path=".env", override=False)

# Persistence: "mongo" in deployments, "memory" for local runs and tests.
CHAT_STORE = os.getenv("CHAT_STORE", "mongo").lower()
MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "wardrobe_nearby")

# Auth
JWT_SECRET = os.getenv("JWT_SECRET", "")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

# Typing entries older than this are treated as expired by readers.
TYPING_TTL_SECONDS = float(os.getenv("TYPING_TTL_SECONDS", "10"))
# Client stops announcing typing after this long without a keystroke.
TYPING_IDLE_SECONDS = float(os.getenv("TYPING_IDLE_SECONDS", "2"))

# Optional cross-process fan-out. Unset means single-process delivery only.
REDIS_URL = os.getenv("REDIS_URL")

# Client reconnect policy
RECONNECT_ATTEMPTS = int(os.getenv("RECONNECT_ATTEMPTS", "5"))
RECONNECT_BASE_DELAY_SECONDS = float(os.getenv("RECONNECT_BASE_DELAY_SECONDS", "1.0"))
RECONNECT_MAX_DELAY_SECONDS = float(os.getenv("RECONNECT_MAX_DELAY_SECONDS", "16.0"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

ACCEPTED_REQUEST_NOTICE = "Your rental request was accepted! You can now chat freely."


def cors_allow_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS", "*")
    origins = [o.strip() for o in raw.split(",") if o.strip()]
    return origins or ["*"]
