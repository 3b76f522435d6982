# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/services/metadata_store.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Durable cache of tool output schemas.

The store remembers, per ``(server, tool)``, the last output schema a tool
advertised and whether that schema came from the server itself
(``is_original_schema``). The registry uses it to heal descriptors whose
server stops advertising an output schema between runs.

One instance is created per process and injected where it is needed. Every
write commits in its own transaction; database failures surface as
``PersistenceError``.

Examples:
    >>> store = MetadataStore("sqlite://")
    >>> store.initialize()
    >>> store.save_tool("weather", "get_forecast", '{"type": "object"}', True).tool_name
    'get_forecast'
    >>> store.get_stats().total_tools
    1
    >>> store.delete_server_tools("weather")
    1
    >>> store.close()
"""

# Standard
from contextlib import contextmanager
import logging
from typing import Dict, Iterator, List, Optional

# Third-Party
from sqlalchemy import delete, distinct, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

# First-Party
from mcpaggregator.db import Base, build_engine, build_session_factory, StoredTool, utc_now
from mcpaggregator.errors import PersistenceError
from mcpaggregator.models import MetadataStats, StoredToolRecord

logger = logging.getLogger(__name__)


class MetadataStore:
    """SQLAlchemy-backed store of :class:`StoredToolRecord` rows."""

    def __init__(self, database_url: str):
        """Create an unopened store.

        Args:
            database_url: SQLAlchemy URL, e.g. ``sqlite:///./.database/mcps.db``.
        """
        self.database_url = database_url
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @property
    def initialized(self) -> bool:
        """Whether ``initialize`` has completed."""
        return self._session_factory is not None

    def initialize(self) -> None:
        """Open the database and create the ``tools`` table if it is missing.

        Raises:
            PersistenceError: If the database cannot be opened.
        """
        if self.initialized:
            return
        try:
            self._engine = build_engine(self.database_url)
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to initialize metadata store at {self.database_url}: {e}") from e
        except OSError as e:
            raise PersistenceError(f"Failed to create database directory for {self.database_url}: {e}") from e
        self._session_factory = build_session_factory(self._engine)
        logger.info(f"Metadata store initialized at {self.database_url}")

    def close(self) -> None:
        """Dispose of the engine. The store must be initialized again before reuse."""
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._session_factory = None

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        if self._session_factory is None:
            raise PersistenceError("Metadata store is not initialized")
        session = self._session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to {action}: {e}") from e
        finally:
            session.close()

    @staticmethod
    def _find(session: Session, server_name: str, tool_name: str) -> Optional[StoredTool]:
        return session.execute(select(StoredTool).where(StoredTool.server_name == server_name, StoredTool.tool_name == tool_name)).scalar_one_or_none()

    def save_tool(self, server_name: str, tool_name: str, output_schema: Optional[str], is_original_schema: bool) -> StoredToolRecord:
        """Insert or replace the record for ``(server_name, tool_name)``.

        Args:
            server_name: Owning server.
            tool_name: Raw tool name.
            output_schema: Serialized schema, or ``None``.
            is_original_schema: Whether the schema came from the live server.

        Returns:
            StoredToolRecord: the stored row.

        Raises:
            PersistenceError: On database failure.
        """
        with self._session(f"save tool {server_name}/{tool_name}") as session:
            row = self._find(session, server_name, tool_name)
            if row is None:
                row = StoredTool(server_name=server_name, tool_name=tool_name)
                session.add(row)
            row.output_schema = output_schema
            row.is_original_schema = is_original_schema
            row.last_updated = utc_now()
            session.commit()
            return StoredToolRecord.model_validate(row)

    def get_tool(self, server_name: str, tool_name: str) -> Optional[StoredToolRecord]:
        """Fetch one record.

        Args:
            server_name: Owning server.
            tool_name: Raw tool name.

        Returns:
            The record, or ``None`` if absent.
        """
        with self._session(f"read tool {server_name}/{tool_name}") as session:
            row = self._find(session, server_name, tool_name)
            return StoredToolRecord.model_validate(row) if row is not None else None

    def get_server_tools(self, server_name: str) -> List[StoredToolRecord]:
        """All records of one server, ordered by tool name.

        Args:
            server_name: Owning server.

        Returns:
            List of records (possibly empty).
        """
        with self._session(f"read tools of {server_name}") as session:
            rows = session.execute(select(StoredTool).where(StoredTool.server_name == server_name).order_by(StoredTool.tool_name)).scalars().all()
            return [StoredToolRecord.model_validate(r) for r in rows]

    def update_tool(self, server_name: str, tool_name: str, output_schema: Optional[str], is_original_schema: bool) -> bool:
        """Update an existing record in place and refresh its timestamp.

        Args:
            server_name: Owning server.
            tool_name: Raw tool name.
            output_schema: New serialized schema.
            is_original_schema: New provenance flag.

        Returns:
            bool: ``False`` when no such record exists.
        """
        with self._session(f"update tool {server_name}/{tool_name}") as session:
            row = self._find(session, server_name, tool_name)
            if row is None:
                return False
            row.output_schema = output_schema
            row.is_original_schema = is_original_schema
            row.last_updated = utc_now()
            session.commit()
            return True

    def get_all_tools(self) -> List[StoredToolRecord]:
        """Every record, ordered by server then tool."""
        with self._session("read all tools") as session:
            rows = session.execute(select(StoredTool).order_by(StoredTool.server_name, StoredTool.tool_name)).scalars().all()
            return [StoredToolRecord.model_validate(r) for r in rows]

    def delete_tool(self, server_name: str, tool_name: str) -> bool:
        """Delete one record.

        Args:
            server_name: Owning server.
            tool_name: Raw tool name.

        Returns:
            bool: whether a row was removed.
        """
        with self._session(f"delete tool {server_name}/{tool_name}") as session:
            result = session.execute(delete(StoredTool).where(StoredTool.server_name == server_name, StoredTool.tool_name == tool_name))
            session.commit()
            return result.rowcount > 0

    def delete_server_tools(self, server_name: str) -> int:
        """Delete every record of a server.

        Args:
            server_name: Owning server.

        Returns:
            int: number of rows removed.
        """
        with self._session(f"delete tools of {server_name}") as session:
            result = session.execute(delete(StoredTool).where(StoredTool.server_name == server_name))
            session.commit()
            return result.rowcount

    def get_all_server_names(self) -> List[str]:
        """Distinct server names present in the store, sorted."""
        with self._session("read server names") as session:
            return list(session.execute(select(distinct(StoredTool.server_name)).order_by(StoredTool.server_name)).scalars().all())

    def get_stats(self) -> MetadataStats:
        """Summarize the store.

        Returns:
            MetadataStats: total rows, rows per server and newest ``last_updated``.
        """
        with self._session("read stats") as session:
            per_server: Dict[str, int] = {name: count for name, count in session.execute(select(StoredTool.server_name, func.count()).group_by(StoredTool.server_name)).all()}
            last_update = session.execute(select(func.max(StoredTool.last_updated))).scalar()
            return MetadataStats(total_tools=sum(per_server.values()), tools_by_server=per_server, last_update=last_update)
