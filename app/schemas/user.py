from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional

class ActingUser(BaseModel):
    """Identity supplied by the auth layer to every engine call"""
    id: int
    is_admin: bool = False
    name: Optional[str] = None

class LoginRequest(BaseModel):
    username: str
    password: str

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: int
    is_admin: bool

class EngineerCreate(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=6)
    is_admin: bool = Field(False, alias="isAdmin")
    name: Optional[str] = None
    designation: Optional[str] = None

    class Config:
        populate_by_name = True

class EngineerResponse(BaseModel):
    id: int
    username: str
    is_admin: bool = Field(..., alias="isAdmin")
    name: Optional[str] = None
    designation: Optional[str] = None
    created_at: Optional[datetime] = Field(None, alias="createdAt")

    class Config:
        from_attributes = True
        populate_by_name = True
