from app.models.user import User, UserRole
from app.models.module import Chapter, Content, ContentType, Module
from app.models.quiz import Quiz, QuizResult
from app.models.progress import ChapterProgress, ContentProgress, ModuleProgress
from app.models.certificate import Certificate, CertificateType
from app.models.notification import Notification, NotificationType
from app.models.security_audit import SecurityAuditEvent

__all__ = [
    "User",
    "UserRole",
    "Module",
    "Chapter",
    "Content",
    "ContentType",
    "Quiz",
    "QuizResult",
    "ContentProgress",
    "ChapterProgress",
    "ModuleProgress",
    "Certificate",
    "CertificateType",
    "Notification",
    "NotificationType",
    "SecurityAuditEvent",
]
