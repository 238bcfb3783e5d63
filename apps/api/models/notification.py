"""In-app notifications produced after audits complete."""

from sqlalchemy import Boolean, Column, String, DateTime, ForeignKey, JSON, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class Notification(Base):
    __tablename__ = "notifications"
    
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    audit_id = Column(String, ForeignKey("audits.id", ondelete="CASCADE"), nullable=True, index=True)
    target = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False)  # score_alert, score_drop, category_drop, critical_issue, performance_degradation
    priority = Column(String, nullable=False, default="medium")
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    data_json = Column(JSON, nullable=True)
    read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    
    user = relationship("User", back_populates="notifications")
