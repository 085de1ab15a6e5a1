"""Campaign model."""

from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, JSON, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class Campaign(Base):
    """Ad campaign moving through draft -> in_progress -> terminal states."""
    
    __tablename__ = "campaigns"
    
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    business_id = Column(String, ForeignKey("businesses.id"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    prompt = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="draft", index=True)  # draft, in_progress, completed, failed, cancelled
    campaign_type = Column(String, nullable=True)  # video, image, script
    estimated_credits = Column(Integer, nullable=False, default=0)
    credits_used = Column(Integer, nullable=False, default=0)
    settings_json = Column("settings", JSON, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    scene_data = Column(JSON, nullable=True)
    output_urls = Column(JSON, nullable=True)
    thumbnail_url = Column(String, nullable=True)
    error_message = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    
    # Relationships
    business = relationship("Business", back_populates="campaigns")
