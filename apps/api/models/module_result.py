"""Per-module result rows of an audit."""

from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class AuditModuleResult(Base):
    """Outcome of one analysis module; written once when the module finishes."""
    
    __tablename__ = "audit_module_results"
    __table_args__ = (UniqueConstraint("audit_id", "module", name="uq_audit_module_results_audit_module"),)
    
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    audit_id = Column(String, ForeignKey("audits.id", ondelete="CASCADE"), nullable=False, index=True)
    module = Column(String, nullable=False)
    position = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default="ok")  # ok, failed
    score = Column(Integer, nullable=False, default=0)
    issues_json = Column(JSON, nullable=False, default=list)
    details_json = Column(JSON, nullable=False, default=dict)
    duration_ms = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    
    audit = relationship("Audit", back_populates="module_results")
