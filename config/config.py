import logging
import os
from dataclasses import dataclass

from environs import Env

logger = logging.getLogger(__name__)

DEFAULT_LOG_FORMAT = "[%(asctime)s] #%(levelname)-8s %(filename)s:%(lineno)d - %(name)s - %(message)s"


@dataclass
class DatabaseSettings:
    service: str | None = "metagdb"
    debug_service: str | None = "debug"
    name: str | None = None
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None


@dataclass
class LogSettings:
    level: str
    format: str


@dataclass
class Config:
    db: DatabaseSettings
    log: LogSettings


def load_config(path: str | None = None) -> Config:
    env = Env()

    if path:
        if not os.path.exists(path):
            logger.warning(".env file not found at '%s', skipping...", path)
        else:
            logger.info("Loading .env from '%s'", path)

    env.read_env(path)

    db = DatabaseSettings(
        service=env("POSTGRES_SERVICE", default="metagdb"),
        debug_service=env("POSTGRES_DEBUG_SERVICE", default="debug"),
        name=env("POSTGRES_DB", default=None),
        host=env("POSTGRES_HOST", default=None),
        port=env.int("POSTGRES_PORT", default=None),
        user=env("POSTGRES_USER", default=None),
        password=env("POSTGRES_PASSWORD", default=None),
    )

    log_settings = LogSettings(
        level=env("LOG_LEVEL", default="INFO"),
        format=env("LOG_FORMAT", default=DEFAULT_LOG_FORMAT),
    )

    logger.info("Configuration loaded successfully")

    return Config(
        db=db,
        log=log_settings,
    )


def configure_logging(settings: LogSettings) -> None:
    logging.basicConfig(
        level=logging.getLevelName(settings.level.upper()),
        format=settings.format,
        force=True,
    )
    logging.getLogger("psycopg").setLevel(logging.WARNING)
