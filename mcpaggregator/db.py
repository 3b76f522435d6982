# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/db.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Database models and engine helpers for the tool metadata cache.

The cache holds a single table, ``tools``, with one row per
``(server_name, tool_name)`` pair. Only the output schema and its provenance
are stored; everything else about a tool is re-read from the live server.

Examples:
    >>> StoredTool.__tablename__
    'tools'
    >>> engine = build_engine("sqlite://")
    >>> Base.metadata.create_all(engine)
    >>> from sqlalchemy import inspect
    >>> sorted(c["name"] for c in inspect(engine).get_columns("tools"))
    ['id', 'is_original_schema', 'last_updated', 'output_schema', 'server_name', 'tool_name']
"""

# Standard
from datetime import datetime, timezone
import os
from typing import Optional

# Third-Party
from sqlalchemy import Boolean, create_engine, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def utc_now() -> datetime:
    """Return the current UTC time as an aware datetime.

    Returns:
        datetime: now, in UTC.

    Examples:
        >>> utc_now().tzinfo is not None
        True
    """
    return datetime.now(timezone.utc)


class StoredTool(Base):
    """ORM model for one persisted ``(server, tool)`` output-schema record."""

    __tablename__ = "tools"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    server_name: Mapped[str] = mapped_column(String(255), nullable=False)
    tool_name: Mapped[str] = mapped_column(String(255), nullable=False)
    output_schema: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_original_schema: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        UniqueConstraint("server_name", "tool_name", name="uq_tools_server_tool"),
        Index("idx_tools_server_name", "server_name"),
    )

    def __repr__(self) -> str:
        return f"<StoredTool {self.server_name}/{self.tool_name} original={self.is_original_schema}>"


def build_engine(database_url: str) -> Engine:
    """Create an engine for ``database_url``.

    SQLite file databases get their parent directory created; in-memory
    SQLite uses a single shared connection so every session sees the same
    database.

    Args:
        database_url: SQLAlchemy URL.

    Returns:
        Engine: the configured engine.

    Examples:
        >>> build_engine("sqlite://").dialect.name
        'sqlite'
    """
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(database_url, pool_pre_ping=True)

    connect_args = {"check_same_thread": False}
    if not url.database or url.database == ":memory:":
        return create_engine(database_url, connect_args=connect_args, poolclass=StaticPool)

    folder = os.path.dirname(url.database)
    if folder:
        os.makedirs(folder, exist_ok=True)
    return create_engine(database_url, connect_args=connect_args)


def build_session_factory(engine: Engine) -> sessionmaker:
    """Return a session factory bound to ``engine``.

    Args:
        engine: Engine the sessions use.

    Returns:
        sessionmaker: factory with ``expire_on_commit`` disabled.
    """
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
