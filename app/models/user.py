from sqlalchemy import Column, Integer, String, Boolean, TIMESTAMP, func
from sqlalchemy.orm import relationship
from app.db.base import Base

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), nullable=False, unique=True, index=True)
    hashed_password = Column(String(255), nullable=False)
    is_admin = Column(Boolean, nullable=False, default=False)
    name = Column(String(150), nullable=True)
    designation = Column(String(150), nullable=True)
    created_at = Column(TIMESTAMP, server_default=func.now())

    # Relationships
    visits = relationship("Visit", back_populates="engineer", foreign_keys="Visit.user_id")
    location_samples = relationship("LocationSample", back_populates="engineer")
