from beanie import Document, Indexed
from pydantic import EmailStr, Field
from datetime import datetime
from typing import Optional


class Student(Document):
    student_id: Indexed(str, unique=True)
    roll_number: Indexed(str, unique=True)
    first_name: str
    last_name: str
    email: Optional[EmailStr] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "students"
