"""SQLAlchemy table holding one row per client and day."""
from __future__ import annotations

from sqlalchemy import Column, Date, Index, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()

UUID_TEXT_LENGTH = 36


class ClientDay(Base):
    __tablename__ = "cids"

    # The composite primary key is the uniqueness constraint on the pair.
    cid = Column(String(UUID_TEXT_LENGTH), primary_key=True)
    day = Column(Date, primary_key=True)

    __table_args__ = (Index("ix_cids_day", "day"),)

    def __repr__(self) -> str:
        return f"<ClientDay {self.cid} on {self.day}>"


cids_table = ClientDay.__table__
