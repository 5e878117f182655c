#!/usr/bin/env python3
"""
Wait for the database, run migrations, seed reference data, then exec uvicorn.
"""
import logging
import os
import sys

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from tripc.core.config import settings
from tripc.core.log_config import configure_logging

configure_logging()
logger = logging.getLogger("start_api")

if settings.DATABASE_URL.startswith("postgresql"):
    import wait_for_db

    wait_for_db.wait(settings.DATABASE_URL)

alembic_cfg = Config(os.path.join(os.path.dirname(os.path.abspath(__file__)), "alembic.ini"))
alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
command.upgrade(alembic_cfg, "head")
logger.info("Migrations applied")

# Seed through an engine created after migrations so no pooled connection predates the schema
from tripc.seed import run as run_seed  # noqa: E402

seed_engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)
SeedSession = sessionmaker(autocommit=False, autoflush=False, bind=seed_engine)
run_seed(SeedSession())
seed_engine.dispose()

port = os.getenv("PORT", "8000")
os.execv(
    sys.executable,
    [sys.executable, "-m", "uvicorn", "tripc.main:app", "--host", "0.0.0.0", "--port", port],
)
