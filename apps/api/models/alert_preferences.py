"""Per-user alert thresholds."""

from sqlalchemy import Boolean, Column, String, DateTime, ForeignKey, Integer
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class AlertPreference(Base):
    __tablename__ = "alert_preferences"
    
    user_id = Column(String, ForeignKey("users.id"), primary_key=True)
    min_score_threshold = Column(Integer, nullable=False, default=70)
    min_score_drop = Column(Integer, nullable=False, default=5)
    realtime_alerts = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    user = relationship("User", back_populates="alert_preferences")
