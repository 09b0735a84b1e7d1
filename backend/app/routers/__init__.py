from app.routers import admin, auth, certificates, content, health, me, modules, notifications, progress, quizzes

__all__ = [
    "admin",
    "auth",
    "certificates",
    "content",
    "health",
    "me",
    "modules",
    "notifications",
    "progress",
    "quizzes",
]
