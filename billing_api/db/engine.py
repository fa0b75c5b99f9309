# billing_api/db/engine.py

from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from billing_api import config


@lru_cache(maxsize=None)
def _engine_for(url: str) -> Engine:
    # echo=True if you want to see SQL printed in the terminal
    return create_engine(url, future=True)


def get_engine() -> Engine:
    return _engine_for(config.DB_URL)
