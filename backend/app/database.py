from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.config import get_settings

settings = get_settings()

engine_options: dict[str, Any] = {"echo": settings.debug, "future": True}
if settings.is_sqlite:
    # Store calls run in worker threads.
    engine_options["connect_args"] = {"check_same_thread": False}
else:
    # pool_pre_ping: verify connections before using them
    engine_options.update(pool_size=10, max_overflow=20, pool_pre_ping=True)

engine = create_engine(settings.database_url, **engine_options)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
