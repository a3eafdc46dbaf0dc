from sqlalchemy import JSON, Column, DateTime, String, func

from newsbrief.database import Base


class Document(Base):
    """One JSON document in a named collection (users, briefings, meta)."""

    __tablename__ = "documents"

    collection = Column(String(50), primary_key=True)
    doc_id = Column(String(255), primary_key=True)
    data = Column(JSON, nullable=False, default=dict)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
