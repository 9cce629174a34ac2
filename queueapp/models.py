from datetime import date, datetime
from typing import Optional

from sqlalchemy import JSON, Column, Index
from sqlmodel import Field, SQLModel


class RestaurantDocument(SQLModel, table=True):
    """One restaurant aggregate stored as a JSON document.

    ``version`` is bumped on every committed transaction and checked on
    write, which gives read-modify-write isolation per restaurant.
    """

    __tablename__ = "restaurant"

    id: str = Field(primary_key=True, max_length=128)
    name: str = Field(max_length=255, nullable=False)
    version: int = Field(default=0, nullable=False)
    document: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    updated_at: datetime = Field(default_factory=datetime.now, nullable=False)


class ArchiveDocument(SQLModel, table=True):
    """One archive part in the sharded archive collection."""

    __tablename__ = "archive"

    doc_id: str = Field(primary_key=True, max_length=255)
    restaurant_id: str = Field(index=True, max_length=128, nullable=False)
    restaurant_name: str = Field(max_length=255, nullable=False)
    archive_date: date = Field(nullable=False)
    part_number: int = Field(default=1, nullable=False)
    total_parts: int = Field(default=1, nullable=False)
    has_more_parts: bool = Field(default=False, nullable=False)
    next_part: Optional[str] = Field(default=None, max_length=255)
    payload: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=datetime.now, nullable=False)

    __table_args__ = (
        Index("ix_archive_restaurant_date_part", "restaurant_id", "archive_date", "part_number"),
    )
