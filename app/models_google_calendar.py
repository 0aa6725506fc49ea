"""
Google Calendar link of a professional

Busy-time lookups and Meet events use the calendar and OAuth tokens stored here.
Tokens are Fernet-encrypted with CALENDAR_ENCRYPTION_KEY.
"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import backref, relationship
from sqlalchemy.sql import func

from .database import Base


class GoogleCalendarIntegration(Base):
    __tablename__ = "professional_google_calendars"

    id = Column(Integer, primary_key=True, index=True)
    professional_id = Column(
        Integer, ForeignKey("professionals.id", ondelete="CASCADE"), nullable=False, unique=True
    )

    google_user_email = Column(String(255), nullable=True)
    google_calendar_id = Column(String(500), nullable=True)  # None = the account's primary calendar

    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    token_expires_at = Column(DateTime, nullable=False)  # Naive UTC

    # Off: no busy-time lookups and no Meet events for this professional
    sync_enabled = Column(Boolean, default=True, nullable=False)

    connected_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    professional = relationship("Professional", backref=backref("google_calendar", uselist=False))
