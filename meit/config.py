import os

from dotenv import load_dotenv

load_dotenv(encoding="utf-8")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


LOG_LEVEL = (os.getenv("LOG_LEVEL") or "INFO").upper()

GIFT_CARD_CODE_MAX_ATTEMPTS = _int_env("GIFT_CARD_CODE_MAX_ATTEMPTS", 5)

CORS_ORIGINS = [
    o.strip()
    for o in (
        os.getenv("CORS_ORIGINS")
        or "http://localhost:3000,https://localhost:3000,http://127.0.0.1:3000,https://127.0.0.1:3000"
    ).split(",")
    if o.strip()
]
