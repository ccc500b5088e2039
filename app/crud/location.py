from sqlalchemy.orm import Session
from sqlalchemy import desc
from datetime import datetime
from typing import List, Optional
from app.models.location_sample import LocationSample

def create_location_sample(
    db: Session,
    engineer_id: int,
    latitude: str,
    longitude: str,
    timestamp: datetime,
    received_at: datetime,
) -> LocationSample:
    """Append a sample; the caller commits"""
    sample = LocationSample(
        engineer_id=engineer_id,
        latitude=latitude,
        longitude=longitude,
        timestamp=timestamp,
        received_at=received_at,
    )
    db.add(sample)
    db.flush()
    return sample

def get_location_sample(db: Session, sample_id: int) -> Optional[LocationSample]:
    return db.query(LocationSample).filter(LocationSample.id == sample_id).first()

def get_latest_location(db: Session, engineer_id: int) -> Optional[LocationSample]:
    """Sample with the greatest timestamp, whatever order it arrived in"""
    return db.query(LocationSample)\
        .filter(LocationSample.engineer_id == engineer_id)\
        .order_by(desc(LocationSample.timestamp), desc(LocationSample.id))\
        .first()

def get_location_history(
    db: Session,
    engineer_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[LocationSample]:
    """Samples for an engineer ordered by timestamp ascending, optionally bounded"""
    query = db.query(LocationSample).filter(LocationSample.engineer_id == engineer_id)
    if start is not None:
        query = query.filter(LocationSample.timestamp >= start)
    if end is not None:
        query = query.filter(LocationSample.timestamp <= end)
    return query.order_by(LocationSample.timestamp, LocationSample.id).all()
