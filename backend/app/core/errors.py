from __future__ import annotations

from typing import Any


class LearningError(Exception):
    """Base class for conditions the API reports to the learner as-is.

    Subclasses fix the HTTP status; `error_code` is the stable machine code and
    `message` the human-readable reason. `details` carries extra fields such as
    counts that the client renders.
    """

    status_code = 400

    def __init__(self, error_code: str, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or None


class InvalidInput(LearningError):
    status_code = 400


class AccessDenied(LearningError):
    status_code = 403


class NotFound(LearningError):
    status_code = 404


class Conflict(LearningError):
    status_code = 409


class EmailNotVerified(AccessDenied):
    def __init__(self) -> None:
        super().__init__("email_not_verified", "verify your email before accessing course content")


class ContentNotFinished(AccessDenied):
    def __init__(self, remaining: int) -> None:
        super().__init__(
            "content_not_finished",
            f"finish the chapter content before the quiz ({remaining} item(s) remaining)",
            details={"remaining": int(remaining)},
        )


class NotEnoughCompletedModules(AccessDenied):
    def __init__(self, *, required: int, completed: int) -> None:
        super().__init__(
            "not_enough_completed_modules",
            f"this certificate requires {required} completed modules, you have {completed}",
            details={"required_modules": int(required), "completed_modules": int(completed)},
        )
