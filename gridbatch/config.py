from __future__ import annotations

import os
from dataclasses import dataclass

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine


DB_URL_ENV = "GRIDBATCH_DB_URL"


@dataclass
class DbConfig:
    url: str
    pool_pre_ping: bool = True
    echo: bool = False

    def __post_init__(self) -> None:
        if not self.url:
            raise ValueError("url must be a non-empty SQLAlchemy database URL")

    @classmethod
    def from_env(cls, env: str = DB_URL_ENV) -> "DbConfig":
        url = os.environ.get(env)
        if not url:
            raise ValueError(f"{env} is not set")
        return cls(url=url)


@dataclass
class GridConfig:
    page_size: int = 100
    max_page_size: int = 10_000

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.page_size <= 0:
            raise ValueError("page_size must be > 0")
        if self.max_page_size < self.page_size:
            raise ValueError("max_page_size must be >= page_size")


def create_engine_from_config(config: DbConfig) -> Engine:
    return create_engine(
        config.url,
        pool_pre_ping=config.pool_pre_ping,
        echo=config.echo,
    )
