import os
import urllib.parse

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

# Load .env file with explicit UTF-8 encoding
load_dotenv(encoding="utf-8")


def normalize_database_url(url: str) -> str:
    # urlunparse drops the empty authority of sqlite:///path, leave those alone
    if url.startswith("sqlite"):
        return url
    # Re-encode the URL so credentials with special characters survive
    try:
        return urllib.parse.urlunparse(urllib.parse.urlparse(url))
    except ValueError:
        return url.encode("utf-8", errors="replace").decode("utf-8")


DATABASE_URL = normalize_database_url(os.getenv("DATABASE_URL") or "sqlite:///./meit.db")


def build_engine(url: str):
    connect_args = {}
    if url.startswith("postgres"):
        connect_args = {"options": "-c timezone=utc"}
    elif url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


engine = build_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
