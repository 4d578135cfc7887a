import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import (Column, DateTime, Integer, MetaData, String, Table, Text, create_engine,
                        delete, select, text)

from src.models.bot_models import LogEntry, LogLevel

logger = logging.getLogger("database")

metadata = MetaData()

bots = Table(
    'bots', metadata,
    Column('id', Integer, primary_key=True),
    Column('state', String, nullable=False),
    Column('config', Text, nullable=False),  # BotConfig.to_dict() as JSON
    Column('updated_at', DateTime(timezone=True)),
)

ledgers = Table(
    'ledgers', metadata,
    Column('bot_id', Integer, primary_key=True),
    Column('payload', Text, nullable=False),  # AccountLedger.to_dict() as JSON
    Column('updated_at', DateTime(timezone=True)),
)

log_entries = Table(
    'log_entries', metadata,
    Column('bot_id', Integer, primary_key=True),
    Column('id', Integer, primary_key=True),
    Column('ts', DateTime(timezone=True)),
    Column('level', String),
    Column('message', Text),
)


class Database:
    """Bot records, ledger snapshots and log entries keyed by bot id.

    Failures are logged and swallowed: the engine keeps trading from memory
    when the store is unavailable.
    """

    def __init__(self, url: str):
        self.url = url
        self.engine = None
        self._connected = False
        try:
            self.engine = create_engine(url)
            metadata.create_all(self.engine)
            logger.info("Database engine created successfully")
        except Exception as e:
            logger.warning(f"Database creation failed: {e}")
            self.engine = None

    @property
    def connected(self) -> bool:
        return self._connected and self.engine is not None

    async def connect(self):
        if not self.engine:
            logger.warning("Database not available")
            return
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            self._connected = True
            logger.info("Database connected successfully")
        except Exception as e:
            logger.error(f"Database connection failed: {e}")
            self._connected = False

    async def disconnect(self):
        self._connected = False
        if self.engine is not None:
            self.engine.dispose()
        logger.info("Database disconnected")

    async def save_bot(self, bot_id: int, state: str, config: Dict[str, Any]):
        if not self.connected:
            return
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(bots).where(bots.c.id == bot_id))
                conn.execute(bots.insert().values(id=bot_id, state=state, config=json.dumps(config),
                                                  updated_at=_now()))
        except Exception as e:
            logger.error(f"Failed to save bot {bot_id}: {e}")

    async def load_bots(self) -> List[Dict[str, Any]]:
        """All stored bots as {id, state, config} ordered by id."""
        if not self.connected:
            return []
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(select(bots).order_by(bots.c.id)).fetchall()
            return [{"id": r.id, "state": r.state, "config": json.loads(r.config)} for r in rows]
        except Exception as e:
            logger.error(f"Failed to load bots: {e}")
            return []

    async def save_ledger(self, bot_id: int, payload: Dict[str, Any]):
        if not self.connected:
            return
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(ledgers).where(ledgers.c.bot_id == bot_id))
                conn.execute(ledgers.insert().values(bot_id=bot_id, payload=json.dumps(payload),
                                                     updated_at=_now()))
        except Exception as e:
            logger.error(f"Failed to save ledger for bot {bot_id}: {e}")

    async def load_ledger(self, bot_id: int) -> Optional[Dict[str, Any]]:
        if not self.connected:
            return None
        try:
            with self.engine.connect() as conn:
                row = conn.execute(select(ledgers.c.payload).where(ledgers.c.bot_id == bot_id)).first()
            return json.loads(row[0]) if row else None
        except Exception as e:
            logger.error(f"Failed to load ledger for bot {bot_id}: {e}")
            return None

    async def append_logs(self, bot_id: int, entries: Iterable[LogEntry]):
        rows = [{"bot_id": bot_id, "id": e.id, "ts": e.timestamp, "level": e.level.value,
                 "message": e.message} for e in entries]
        if not self.connected or not rows:
            return
        try:
            with self.engine.begin() as conn:
                conn.execute(log_entries.insert(), rows)
        except Exception as e:
            logger.error(f"Failed to append logs for bot {bot_id}: {e}")

    async def load_logs(self, bot_id: int, limit: int = 1000) -> List[LogEntry]:
        """Newest `limit` entries for a bot, oldest first."""
        if not self.connected:
            return []
        try:
            query = (select(log_entries).where(log_entries.c.bot_id == bot_id)
                     .order_by(log_entries.c.id.desc()).limit(limit))
            with self.engine.connect() as conn:
                rows = conn.execute(query).fetchall()
            return [LogEntry(id=r.id, timestamp=_aware(r.ts), level=LogLevel(r.level), message=r.message)
                    for r in reversed(rows)]
        except Exception as e:
            logger.error(f"Failed to load logs for bot {bot_id}: {e}")
            return []


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(ts: datetime) -> datetime:
    # SQLite drops tzinfo on round trip
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


__all__ = ["Database"]
