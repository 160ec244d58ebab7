"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import Column, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base

# Base class for SQLAlchemy models
Base = declarative_base()


class Message(Base):
    """
    SQLAlchemy model for storing channel messages.

    Table: messages
    Primary Key: id (AUTOINCREMENT, so deleted ids are never handed out again)
    """
    __tablename__ = "messages"
    __table_args__ = (
        Index("idx_messages_channel_id", "channel", "id"),
        Index("idx_messages_created_at", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key=True)
    channel = Column(String, nullable=False)
    sender = Column(String, nullable=False)
    body = Column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    metadata_json = Column(Text, nullable=True)
    created_at = Column(String, nullable=False)  # Server time ISO-8601
    updated_at = Column(String, nullable=True)  # Null until first update
