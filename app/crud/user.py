from sqlalchemy.orm import Session
from typing import List, Optional
from app.models.user import User
from app.schemas.user import EngineerCreate
from app.core.security import get_password_hash, verify_password

def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()

def get_user_by_username(db: Session, username: str) -> Optional[User]:
    return db.query(User).filter(User.username == username).first()

def create_user(db: Session, user_in: EngineerCreate) -> User:
    """Create a user with a hashed password"""
    db_user = User(
        username=user_in.username,
        hashed_password=get_password_hash(user_in.password),
        is_admin=user_in.is_admin,
        name=user_in.name,
        designation=user_in.designation,
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    return db_user

def authenticate_user(db: Session, username: str, password: str) -> Optional[User]:
    user = get_user_by_username(db, username)
    if not user or not verify_password(password, user.hashed_password):
        return None
    return user

def get_engineers(db: Session) -> List[User]:
    """Get all non-admin users"""
    return db.query(User).filter(User.is_admin == False).order_by(User.username).all()
