import json
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Generator, Optional

from fastapi import Request
from sqlalchemy import create_engine, delete, event, func, inspect, select, text, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from yaklog.errors import StorageError
from yaklog.models import Base, Message
from yaklog.schemas import ChannelSummary, MessageResponse

logger = logging.getLogger(__name__)

# SQLite INTEGER is a signed 64-bit value; larger ids cannot be bound
MAX_ID = 2**63 - 1

# Sentinel for "field not supplied" in partial updates; None is a real value
UNSET: Any = object()


def is_valid_id(message_id: int) -> bool:
    """True if message_id could name a stored row (ids start at 1)."""
    return 1 <= message_id <= MAX_ID


def utc_now() -> str:
    """Server timestamp in ISO-8601 UTC with Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# =============================================================================
# Metadata Codec
# =============================================================================

def encode_metadata(metadata: Optional[dict]) -> Optional[str]:
    """
    Serialize a metadata object to its canonical stored form.

    None is stored as NULL, never as "{}".
    """
    if metadata is None:
        return None
    return json.dumps(metadata, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def decode_metadata(raw: Optional[str]) -> Optional[dict]:
    """
    Parse stored metadata back into a dict.

    Anything that is not a JSON object (corrupt text, arrays, scalars) reads
    back as None so that reads never fail on historical rows.
    """
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except ValueError:
        logger.warning("Ignoring malformed stored metadata")
        return None
    if not isinstance(value, dict):
        logger.warning(f"Ignoring stored metadata of type {type(value).__name__}")
        return None
    return value


def to_message(row: Message) -> MessageResponse:
    return MessageResponse(
        id=row.id,
        channel=row.channel,
        sender=row.sender,
        body=row.body,
        metadata=decode_metadata(row.metadata_json),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


# =============================================================================
# Engine Setup
# =============================================================================

def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    # WAL lets readers proceed while a write is in flight
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def create_sqlite_engine(db_path: str) -> Engine:
    """
    Create a SQLAlchemy engine for a SQLite file, creating its directory.

    check_same_thread=False is required because FastAPI runs sync endpoints
    in a threadpool.
    """
    directory = os.path.dirname(os.path.abspath(db_path))
    os.makedirs(directory, exist_ok=True)

    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
        echo=False,
    )
    event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


def migrate_schema(engine: Engine) -> None:
    """
    Create the messages table and bring older tables up to date.

    Safe to run on every startup: columns are added only when introspection
    shows they are missing, and indexes are created with checkfirst.
    """
    Base.metadata.create_all(bind=engine)

    columns = {column["name"] for column in inspect(engine).get_columns(Message.__tablename__)}
    with engine.begin() as conn:
        if "updated_at" not in columns:
            logger.info("Adding updated_at column to messages table")
            conn.execute(text("ALTER TABLE messages ADD COLUMN updated_at TEXT"))

        # create_all skips tables that already exist, including their indexes
        for index in Message.__table__.indexes:
            index.create(bind=conn, checkfirst=True)


# =============================================================================
# Message Store
# =============================================================================

class MessageStore:
    """
    Durable, ordered record of messages per channel.

    Every public method is one unit of work on its own session: a single
    statement, or for inserts and updates one write followed by a read-back.
    Database failures are raised as StorageError and never retried here.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    @classmethod
    def open(cls, db_path: str) -> "MessageStore":
        logger.debug(f"Opening message store at {db_path}")
        engine = create_sqlite_engine(db_path)
        try:
            migrate_schema(engine)
        except SQLAlchemyError as e:
            engine.dispose()
            logger.error(f"Failed to initialize database: {e}")
            raise StorageError("failed to initialize message store") from e
        logger.info(f"Message store opened: {db_path}")
        return cls(engine)

    def close(self) -> None:
        self.engine.dispose()
        logger.info("Message store closed")

    @contextmanager
    def session(self, operation: str) -> Generator[Session, None, None]:
        """Yield a session, converting database failures into StorageError."""
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Storage operation {operation} failed: {e}")
            raise StorageError(f"{operation} failed") from e
        finally:
            db.close()

    # -------------------------------------------------------------------------
    # Insert / read path
    # -------------------------------------------------------------------------

    def insert(
        self,
        channel: str,
        sender: str,
        body: str,
        metadata: Optional[dict] = None,
    ) -> MessageResponse:
        """
        Append a message and return it as stored.

        Args:
            channel: Channel to append to
            sender: Free-text author identifier
            body: Message text
            metadata: Optional metadata object

        Returns:
            The stored message including its new id and created_at
        """
        logger.debug(f"Inserting message: channel={channel}, sender={sender}, body_length={len(body)}")

        with self.session("insert") as db:
            message = Message(
                channel=channel,
                sender=sender,
                body=body,
                metadata_json=encode_metadata(metadata),
                created_at=utc_now(),
                updated_at=None,
            )
            db.add(message)
            db.commit()
            # commit expires the instance, so this re-reads the stored row
            db.refresh(message)
            logger.info(f"Message created: id={message.id}, channel={channel}")
            return to_message(message)

    def get_message(self, message_id: int) -> Optional[MessageResponse]:
        if not is_valid_id(message_id):
            return None
        with self.session("get_message") as db:
            row = db.get(Message, message_id)
            return to_message(row) if row is not None else None

    def list_messages(
        self,
        channel: Optional[str] = None,
        limit: int = 50,
        after_id: Optional[int] = None,
        before_id: Optional[int] = None,
    ) -> list[MessageResponse]:
        """
        Return the most recent `limit` messages matching all filters.

        The scan runs newest-first so the limit applies to the latest rows,
        then the page is reversed: results are always in ascending id order.

        Args:
            channel: Exact channel match
            limit: Maximum number of messages
            after_id: Only ids strictly greater than this
            before_id: Only ids strictly less than this
        """
        logger.debug(
            f"Listing messages: channel={channel}, limit={limit}, "
            f"after_id={after_id}, before_id={before_id}"
        )

        # Bounds outside the id range either exclude everything or nothing
        if after_id is not None and after_id >= MAX_ID:
            return []
        if before_id is not None and before_id <= 1:
            return []
        if after_id is not None and after_id < 1:
            after_id = None
        if before_id is not None and before_id > MAX_ID:
            before_id = None

        query = select(Message)
        if channel:
            query = query.where(Message.channel == channel)
        if after_id is not None:
            query = query.where(Message.id > after_id)
        if before_id is not None:
            query = query.where(Message.id < before_id)
        query = query.order_by(Message.id.desc()).limit(limit)

        with self.session("list_messages") as db:
            rows = db.scalars(query).all()
            messages = [to_message(row) for row in reversed(rows)]

        logger.debug(f"Retrieved {len(messages)} messages")
        return messages

    def list_channels(self, limit: int = 100) -> list[ChannelSummary]:
        """Aggregate per channel, most recently active channel first."""
        latest_id = func.max(Message.id).label("latest_id")
        query = (
            select(
                Message.channel,
                func.count(Message.id).label("message_count"),
                latest_id,
                func.max(Message.created_at).label("last_message_at"),
            )
            .group_by(Message.channel)
            .order_by(latest_id.desc())
            .limit(limit)
        )

        with self.session("list_channels") as db:
            rows = db.execute(query).all()

        return [
            ChannelSummary(
                channel=row.channel,
                message_count=row.message_count,
                latest_id=row.latest_id,
                last_message_at=row.last_message_at,
            )
            for row in rows
        ]

    # -------------------------------------------------------------------------
    # Update / delete path
    # -------------------------------------------------------------------------

    def update_message(
        self,
        message_id: int,
        body: Any = UNSET,
        metadata: Any = UNSET,
    ) -> Optional[MessageResponse]:
        """
        Apply a partial update and return the updated message.

        Only supplied fields change. updated_at is refreshed on every update
        of an existing row, even when the values are identical.

        Returns:
            The updated message, or None if no row has that id
        """
        if not is_valid_id(message_id):
            logger.info(f"Update skipped, message not found: id={message_id}")
            return None

        values: dict[str, Any] = {"updated_at": utc_now()}
        if body is not UNSET:
            values["body"] = body
        if metadata is not UNSET:
            values["metadata_json"] = encode_metadata(metadata)

        logger.debug(f"Updating message {message_id}: fields={sorted(values)}")

        with self.session("update_message") as db:
            result = db.execute(
                update(Message).where(Message.id == message_id).values(**values)
            )
            updated = result.rowcount > 0
            db.commit()
            if not updated:
                logger.info(f"Update skipped, message not found: id={message_id}")
                return None
            row = db.get(Message, message_id)
            if row is None:
                # Deleted between the update and the read-back
                return None
            logger.info(f"Message updated: id={message_id}")
            return to_message(row)

    def delete_message(self, message_id: int) -> bool:
        """Delete a message. Returns False when there was nothing to delete."""
        if not is_valid_id(message_id):
            logger.info(f"Delete message id={message_id}: not found")
            return False

        with self.session("delete_message") as db:
            result = db.execute(delete(Message).where(Message.id == message_id))
            deleted = result.rowcount > 0
            db.commit()

        logger.info(f"Delete message id={message_id}: {'deleted' if deleted else 'not found'}")
        return deleted

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    def check_health(self) -> bool:
        """
        Check if the database is reachable and schema is applied.

        Returns:
            True if DB is healthy and the messages table exists, False otherwise.
        """
        logger.debug("Checking database health...")
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
                result = conn.execute(text(
                    "SELECT COUNT(*) FROM sqlite_master WHERE type='table' AND name='messages'"
                )).scalar()
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False

        if result == 0:
            logger.error("Database schema not applied: 'messages' table not found")
            return False
        return True


def get_store(request: Request) -> MessageStore:
    """Dependency returning the store opened by the application lifespan."""
    return request.app.state.store
