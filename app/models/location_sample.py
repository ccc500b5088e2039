from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from app.db.base import Base

class LocationSample(Base):
    __tablename__ = "location_samples"
    __table_args__ = (
        Index("ix_location_samples_engineer_timestamp", "engineer_id", "timestamp"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    engineer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    latitude = Column(String(32), nullable=False)
    longitude = Column(String(32), nullable=False)
    timestamp = Column(DateTime, nullable=False)
    received_at = Column(DateTime, nullable=False)

    # Relationships
    engineer = relationship("User", back_populates="location_samples")
