"""Audit model for website audits."""

from sqlalchemy import Column, String, DateTime, Float, ForeignKey, Integer, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class Audit(Base):
    """One audit run of a target site for a user."""
    
    __tablename__ = "audits"
    
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    target = Column(String, nullable=False, index=True)
    status = Column(String, default="queued", nullable=False)  # queued, running, completed, failed
    overall_score = Column(Integer, nullable=True)
    progress = Column(Integer, default=0, nullable=False)
    status_message = Column(String, nullable=True)
    current_category = Column(String, nullable=True)
    enabled_modules = Column(JSON, nullable=False, default=list)
    options = Column(JSON, nullable=True)
    error_message = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Float, nullable=True)
    
    # Relationships
    user = relationship("User", back_populates="audits")
    module_results = relationship(
        "AuditModuleResult",
        back_populates="audit",
        cascade="all, delete-orphan",
        order_by="AuditModuleResult.position",
    )
