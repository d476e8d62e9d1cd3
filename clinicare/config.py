import logging
import os

from dotenv import load_dotenv

load_dotenv()

BASE_URL = os.getenv("CLINICARE_BASE_URL", "http://localhost:54321")
ANON_KEY = os.getenv("CLINICARE_ANON_KEY", "")
API_KEY = os.getenv("CLINICARE_API_KEY", "")
SESSION_FILE = os.getenv("CLINICARE_SESSION_FILE", os.path.expanduser("~/.clinicare/session.json"))
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "15"))
EXPIRY_HORIZON_DAYS = int(os.getenv("EXPIRY_HORIZON_DAYS", "90"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def offline_mode() -> bool:
    return os.getenv("OFFLINE_MODE", "0") == "1"


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
