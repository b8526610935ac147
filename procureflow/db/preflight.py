"""
Startup connectivity check for the marketplace database.
"""
import sys

from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from procureflow.core.config import settings
from procureflow.core.logging import get_logger

logger = get_logger("db_preflight")


def _redacted(url: str) -> str:
    # host/db part only; credentials never reach the log
    if "@" in url:
        return url.split("@")[-1]
    return url.split("://")[0]


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, OperationalError) and "password authentication failed" not in str(exc).lower()


def check_database(url: str, attempts: int = 5, delay: float = 2) -> None:
    """
    Run SELECT 1 against the database, retrying while it comes up.

    Bad credentials fail on the first attempt; anything else is retried
    `attempts` times before the last OperationalError is raised.
    """
    connect_args = {} if url.startswith("sqlite") else {"connect_timeout": 5}
    engine = create_engine(url, connect_args=connect_args)
    retryer = Retrying(
        retry=retry_if_exception(_is_transient),
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(delay),
        before_sleep=lambda state: logger.warning(
            f"Database not reachable (attempt {state.attempt_number}/{attempts}); retrying in {delay}s"
        ),
        reraise=True,
    )
    try:
        for attempt in retryer:
            with attempt:
                with engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
    finally:
        engine.dispose()


def run_db_preflight(attempts: int = 5, delay: float = 2) -> None:
    """Exit the process when the configured database stays unreachable."""
    url = settings.DATABASE_URL
    logger.info(f"Running DB preflight check against: {_redacted(url)}")
    try:
        check_database(url, attempts, delay)
    except OperationalError as e:
        if "password authentication failed" in str(e).lower():
            logger.error(
                f"Database rejected credentials for {settings.POSTGRES_USER}@{settings.POSTGRES_DB}; "
                "check the POSTGRES_* settings"
            )
        else:
            logger.error(f"Could not connect to database after {attempts} attempt(s): {e}")
        sys.exit(1)
    logger.info("Database connection successful")


if __name__ == "__main__":
    run_db_preflight()
