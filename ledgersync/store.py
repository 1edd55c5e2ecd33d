"""CRUD access to connection records, keyed by connection name."""
import logging
from typing import List, Optional

from sqlalchemy import select

from ledgersync import db as database
from ledgersync.errors import ConnectionNotFound
from ledgersync.models import Connection

logger = logging.getLogger(__name__)


class ConnectionStore:
    def __init__(self, session_factory=None):
        self._session_factory = session_factory

    def _session(self):
        # Resolved late so tests can swap db.SessionLocal.
        factory = self._session_factory or database.SessionLocal
        return factory()

    def get(self, name: str) -> Optional[Connection]:
        with self._session() as db:
            conn = db.execute(select(Connection).where(Connection.name == name)).scalar_one_or_none()
            if conn is not None:
                db.expunge(conn)
            return conn

    def require(self, name: str) -> Connection:
        conn = self.get(name)
        if conn is None:
            raise ConnectionNotFound(name)
        return conn

    def exists(self, name: str) -> bool:
        return self.get(name) is not None

    def list(self) -> List[Connection]:
        with self._session() as db:
            rows = db.execute(select(Connection).order_by(Connection.name)).scalars().all()
            for row in rows:
                db.expunge(row)
            return list(rows)

    def names(self) -> List[str]:
        with self._session() as db:
            return list(db.execute(select(Connection.name).order_by(Connection.name)).scalars())

    def upsert(self, name: str, **fields) -> Connection:
        with self._session() as db:
            conn = db.execute(select(Connection).where(Connection.name == name)).scalar_one_or_none()
            if conn is None:
                conn = Connection(name=name)
                db.add(conn)
            for key, value in fields.items():
                setattr(conn, key, value)
            db.commit()
            db.refresh(conn)
            db.expunge(conn)
            return conn

    def update(self, name: str, **fields) -> None:
        """Sets only the given columns; everything else on the row is left alone."""
        with self._session() as db:
            conn = db.execute(select(Connection).where(Connection.name == name)).scalar_one_or_none()
            if conn is None:
                raise ConnectionNotFound(name)
            for key, value in fields.items():
                setattr(conn, key, value)
            db.commit()

    def delete(self, name: str) -> bool:
        with self._session() as db:
            conn = db.execute(select(Connection).where(Connection.name == name)).scalar_one_or_none()
            if conn is None:
                return False
            db.delete(conn)
            db.commit()
            logger.info("Deleted connection", extra={"connection": name})
            return True
