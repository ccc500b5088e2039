from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Union

class LocationCreate(BaseModel):
    latitude: Union[str, float]
    longitude: Union[str, float]
    # Device clock; receipt time is used when omitted
    timestamp: Optional[datetime] = None

class LocationResponse(BaseModel):
    id: int
    user_id: int = Field(..., alias="userId", validation_alias="engineer_id")
    latitude: str
    longitude: str
    timestamp: datetime
    received_at: Optional[datetime] = Field(None, alias="receivedAt", validation_alias="received_at")

    class Config:
        from_attributes = True
        populate_by_name = True
