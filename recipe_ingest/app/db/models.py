from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Integer, JSON, String, Text, func

from recipe_ingest.app.db.base import Base


class IngestTask(Base):
    __tablename__ = "ingest_tasks"

    id = Column(String, primary_key=True, index=True)
    thread_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    mode = Column(String, nullable=False)  # Url | Query | Normalize
    payload = Column(JSON, nullable=False)
    status = Column(String, nullable=False, default="PENDING")
    current_phase = Column(String)
    progress = Column(Integer, nullable=False, default=0)
    status_message = Column(Text)
    result_json = Column(JSON)  # serialized RecipeDraft
    error_code = Column(String)
    error_message = Column(Text)
    failed_phase = Column(String)
    attempts = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime)
    review_ready_at = Column(DateTime)
    completed_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, server_default=func.now())
    updated_at = Column(
        DateTime, nullable=False, default=datetime.utcnow, server_default=func.now(), onupdate=datetime.utcnow
    )

    __table_args__ = (Index("ix_ingest_tasks_status_created", "status", "created_at"),)


class StoredRecipe(Base):
    __tablename__ = "recipes"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    document = Column(JSON, nullable=False)  # canonical Recipe
    source_json = Column(JSON)
    source_url_hash = Column(String, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
