import os
from pathlib import Path
from dotenv import load_dotenv
load_dotenv()  # reads .env in the project root

class Settings:
    DATA_DIR = Path(os.getenv("DATA_DIR", "./data")).expanduser().resolve()
    DATA_DIR.mkdir(parents=True, exist_ok=True)

    WEB_HOST = os.getenv("WEB_HOST", "127.0.0.1")
    WEB_PORT = int(os.getenv("WEB_PORT", "3000"))
    PUBLIC_BASE = os.getenv("PUBLIC_BASE", "http://localhost:3000")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    DATABASE_URL = os.getenv(
        "DATABASE_URL", f"sqlite:///{DATA_DIR / 'shop.sqlite3'}"
    )

    # ------------------------------------------------------------------
    # Sessions and credentials ------------------------------------------
    SESSION_SECRET = os.getenv("SESSION_SECRET", "dev-session-secret")
    SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", str(12 * 3600)))
    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
    PASSWORD_MIN_LENGTH = int(os.getenv("PASSWORD_MIN_LENGTH", "8"))
    RESET_TOKEN_TTL_SECONDS = int(os.getenv("RESET_TOKEN_TTL_SECONDS", "3600"))

    LOGIN_ATTEMPT_LIMIT = int(os.getenv("LOGIN_ATTEMPT_LIMIT", "5"))
    LOGIN_ATTEMPT_WINDOW = int(os.getenv("LOGIN_ATTEMPT_WINDOW", "300"))
    LOGIN_BACKOFF_SECONDS = int(os.getenv("LOGIN_BACKOFF_SECONDS", "900"))

    # ------------------------------------------------------------------
    # Outbound mail -----------------------------------------------------

    # empty SMTP_HOST disables delivery; reset links are only logged
    SMTP_HOST = os.getenv("SMTP_HOST", "")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME", "")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
    SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "1") == "1"
    MAIL_SENDER = os.getenv("MAIL_SENDER", "shop@node-complete.com")

    def resolve_data_path(self, path: str | os.PathLike[str]) -> Path:
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.DATA_DIR / candidate
        return candidate.expanduser().resolve()

settings = Settings()
