"""
Form tables: form metadata, one row per field, and collected responses.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text

from formbuilder.database.postgresql import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Form(Base):
    __tablename__ = "forms"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    published = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)


class FormFieldRecord(Base):
    """Field ids are chosen by the editor, so they are unique per form only."""

    __tablename__ = "form_fields"

    form_id = Column(String(36), ForeignKey("forms.id", ondelete="CASCADE"), primary_key=True)
    id = Column(String(255), primary_key=True)
    type = Column(String(20), nullable=False)  # text | number | textarea
    label = Column(String(255), nullable=False)
    required = Column(Boolean, nullable=False, default=False)
    order = Column(Integer, nullable=False, default=0)
    placeholder = Column(String(255), nullable=True)
    min_length = Column(Integer, nullable=True)
    max_length = Column(Integer, nullable=True)
    min = Column(Float, nullable=True)
    max = Column(Float, nullable=True)
    step = Column(Float, nullable=True)
    rows = Column(Integer, nullable=True)


class FormResponse(Base):
    __tablename__ = "form_responses"

    id = Column(String(36), primary_key=True, default=_uuid)
    form_id = Column(String(36), ForeignKey("forms.id", ondelete="CASCADE"), nullable=False, index=True)
    values = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
