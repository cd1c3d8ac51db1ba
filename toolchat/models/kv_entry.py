from sqlalchemy import JSON, Column, DateTime, PrimaryKeyConstraint, Text
from sqlalchemy.sql import func

from toolchat.database import Base


class KVEntry(Base):
    __tablename__ = "kv_entries"
    __table_args__ = (PrimaryKeyConstraint("namespace", "key"),)

    namespace = Column(Text, nullable=False)
    key = Column(Text, nullable=False)
    value = Column(Text, nullable=False)
    metadata_json = Column(JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
