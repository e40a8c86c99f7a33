from pathlib import Path

from dotenv import find_dotenv, load_dotenv
from loguru import logger

from habitcache.logging_setup import setup_logging

MIGRATIONS_DIR = Path(__file__).resolve().parent / "db" / "migrations"


def _load_env() -> None:
    env_path = find_dotenv(usecwd=True)
    if env_path:
        logger.info("Loaded .env from {}", env_path)
        load_dotenv(env_path, override=False)
    else:
        logger.debug("No .env found")


def run_migrations(url: str | None = None) -> None:
    from alembic import command
    from alembic.config import Config

    alembic_cfg = Config()
    alembic_cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
    if url:
        alembic_cfg.set_main_option("sqlalchemy.url", url)
    command.upgrade(alembic_cfg, "head")


def init_storage(url: str | None = None, *, log_path: str | None = None) -> None:
    """Prepare a host process: environment, logging, schema at head."""
    _load_env()
    setup_logging(log_path)

    from habitcache.config import settings

    if url is None:
        Path(settings.sqlite_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
    run_migrations(url)
    logger.info("storage ready url={}", url or settings.sqlite_path)
