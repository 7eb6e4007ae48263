"""
SQLAlchemy ORM models for the metadata database.
"""

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class TileRecordORM(Base):
    __tablename__ = "tile_records"

    zoom = Column(Integer, primary_key=True)
    x = Column(Integer, primary_key=True)
    y = Column(Integer, primary_key=True)

    status = Column(String(16), nullable=False, index=True)
    content_hash = Column(String(64))
    updated_at = Column(DateTime(timezone=True), nullable=False)
    error = Column(String)
