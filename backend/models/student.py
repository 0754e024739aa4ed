"""Student model definitions."""

from sqlalchemy import Column, ForeignKey, String
from backend.database import Base
from backend.models.user import new_id


class Student(Base):
    """Student profile attached to a registered user."""
    __tablename__ = "students"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"))
    phone = Column(String)
    instruments = Column(String)
