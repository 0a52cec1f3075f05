import logging

import psycopg
from psycopg.conninfo import make_conninfo

from config.config import DatabaseSettings
from metagdb.infrastructure.database.errors import StoreError

logger = logging.getLogger(__name__)


def build_conninfo(settings: DatabaseSettings, debug: bool = False) -> str:
    params = {
        "service": settings.debug_service if debug else settings.service,
        "dbname": settings.name,
        "host": settings.host,
        "port": settings.port,
        "user": settings.user,
        "password": settings.password,
    }
    return make_conninfo(**{k: v for k, v in params.items() if v not in (None, "")})


def connect(settings: DatabaseSettings, debug: bool = False) -> psycopg.Connection:
    """Open a connection with autocommit disabled.

    Nothing is committed until the caller commits explicitly.
    """
    conninfo = build_conninfo(settings, debug=debug)
    try:
        conn = psycopg.connect(conninfo, autocommit=False)
    except psycopg.OperationalError as err:
        if debug:
            raise StoreError(
                f"{err}\nHINT: Did you create the service ->{settings.debug_service}<- and the respective database?"
            ) from err
        raise StoreError(str(err).strip()) from err
    logger.info(
        "Connected to Postgres. service='%s', dbname='%s', user='%s'",
        settings.debug_service if debug else settings.service,
        conn.info.dbname,
        conn.info.user,
    )
    return conn
