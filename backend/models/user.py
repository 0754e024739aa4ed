"""User model definitions."""

import uuid

from sqlalchemy import Column, String
from backend.database import Base


def new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """Represents an application user (admin, teacher or student)."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String, unique=True, index=True)
    name = Column(String)
    phone = Column(String)
    role = Column(String)  # admin/teacher/student
