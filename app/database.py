from motor.motor_asyncio import AsyncIOMotorClient
from beanie import init_beanie

from app.config import MONGODB_URL, DATABASE_NAME
from app.models.attendance_record import AttendanceRecordDocument
from app.models.blocked_identity import BlockedIdentityDocument
from app.models.class_session import ClassSession
from app.models.device_association import DeviceAssociation
from app.models.security_incident import SecurityIncidentDocument
from app.models.student import Student
from app.models.verification_code import VerificationCodeDocument

DOCUMENT_MODELS = [
    ClassSession,
    Student,
    VerificationCodeDocument,
    AttendanceRecordDocument,
    DeviceAssociation,
    BlockedIdentityDocument,
    SecurityIncidentDocument,
]


async def init_db(url: str = MONGODB_URL, database: str = DATABASE_NAME):
    # tz_aware so expiry comparisons stay between aware UTC datetimes
    client = AsyncIOMotorClient(url, tz_aware=True)
    await init_beanie(database=client[database], document_models=DOCUMENT_MODELS)
    return client
