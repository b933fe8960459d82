import os
import urllib.parse
from pathlib import Path
from sqlalchemy import create_engine
from dotenv import load_dotenv

from basketiq.utils.logger import get_logger
from basketiq.utils.paths import ROOT_DIR
from basketiq.utils.config import load_config

load_dotenv()

logger = get_logger(__name__)


def _build_postgres_url(host: str, database: str, username: str, password: str, port: str) -> str:
    user_enc = urllib.parse.quote_plus(username)
    pwd_enc = urllib.parse.quote_plus(password)
    return f"postgresql+psycopg2://{user_enc}:{pwd_enc}@{host}:{port}/{database}"


def get_db_connection():
    """Return a SQLAlchemy engine based on configuration and environment.

    * When ``cfg.database.engine`` is ``"postgres"`` and the ``BASKETIQ_PG_*``
      credentials are present, connect to Postgres via ``psycopg2``.
    * Otherwise build a SQLite engine at the configured ``sqlite_path``. With
      ``database.strict_db`` set, missing Postgres credentials raise instead.
    """

    host = os.getenv("BASKETIQ_PG_HOST")
    database = os.getenv("BASKETIQ_PG_DB")
    username = os.getenv("BASKETIQ_PG_USER")
    password = os.getenv("BASKETIQ_PG_PWD")
    port = os.getenv("BASKETIQ_PG_PORT", "5432")

    strict_db = False
    sqlite_path = ROOT_DIR.parent / "basketiq.db"
    engine_choice = "sqlite"

    try:
        cfg = load_config()
        db_cfg = getattr(cfg, "database", None)
        if db_cfg:
            engine_choice = str(getattr(db_cfg, "engine", engine_choice) or engine_choice).lower()
            strict_db = bool(getattr(db_cfg, "strict_db", strict_db))
            sqlite_path = Path(getattr(db_cfg, "sqlite_path", sqlite_path))
    except ValueError as exc:
        logger.warning("Unable to load config; defaulting to SQLite. Error: %s", exc)

    def _connect_sqlite(path: Path):
        resolved = Path(path)
        logger.info("Using SQLite database at: %s", resolved)
        return create_engine(f"sqlite:///{resolved}")

    if engine_choice == "postgres":
        if all([host, database, username, password]):
            logger.info("Connecting to Postgres database: %s/%s", host, database)
            return create_engine(_build_postgres_url(host, database, username, password, port))
        if strict_db:
            raise RuntimeError("database.strict_db=True but BASKETIQ_PG_* environment variables are not set")
        logger.warning(
            "Postgres engine requested but BASKETIQ_PG_* credentials are missing; falling back to SQLite at %s",
            sqlite_path,
        )

    return _connect_sqlite(sqlite_path)


def validate_connection(engine) -> bool:
    """Validate DB connection health by executing a trivial query."""
    try:
        with engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        return True
    except Exception as e:
        logger.error("Database connection validation failed: %s", e)
        return False
