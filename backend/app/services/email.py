from __future__ import annotations

import logging

import httpx
from jinja2 import DictLoader, Environment, StrictUndefined, select_autoescape

from app.core.config import settings
from app.core.queue import enqueue_best_effort

log = logging.getLogger(__name__)

_BASE_HTML = """<!DOCTYPE html>
<html><head><meta charset="utf-8"></head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #1e40af;">{{ heading }}</h2>
  {% block body %}{% endblock %}
  {% if cta_url %}
  <p style="text-align: center; margin: 30px 0;">
    <a href="{{ cta_url }}" style="background: #f97316; color: white; padding: 12px 24px; text-decoration: none; border-radius: 5px;">{{ cta_label }}</a>
  </p>
  <p style="font-size: 12px; color: #64748b; word-break: break-all;">{{ cta_url }}</p>
  {% endif %}
  {% block footer %}{% endblock %}
</body></html>
"""

_TEMPLATES = {
    "base.html": _BASE_HTML,
    "verification.html": """{% extends "base.html" %}
{% block body %}<p>Welcome {{ name }}!</p>
<p>Confirm your email address to start the first module.</p>{% endblock %}
{% block footer %}<p style="font-size: 12px; color: #64748b;">This link expires in {{ hours }} hours.</p>{% endblock %}
""",
    "verification.txt": "Welcome {{ name }}!\n\nConfirm your email address: {{ cta_url }}\n",
    "welcome.html": """{% extends "base.html" %}
{% block body %}<p>Congratulations {{ name }}, your email is verified.</p>
<p>Modules unlock one after another: finish each chapter and pass its quiz to move on.</p>{% endblock %}
""",
    "welcome.txt": "Congratulations {{ name }}, your email is verified.\n\nStart learning: {{ cta_url }}\n",
    "module_completed.html": """{% extends "base.html" %}
{% block body %}<p>Well done {{ name }}!</p>
<p>You completed <strong>{{ module_title }}</strong>. The next module is now open.</p>{% endblock %}
""",
    "module_completed.txt": "Well done {{ name }}!\n\nYou completed {{ module_title }}. Continue: {{ cta_url }}\n",
    "password_reset.html": """{% extends "base.html" %}
{% block body %}<p>Hello {{ name }},</p>
<p>Someone asked to reset the password of your account. Use the button below to choose a new one.</p>{% endblock %}
{% block footer %}<p style="font-size: 12px; color: #64748b;">This link expires in {{ minutes }} minutes. If you did not ask for it, ignore this email.</p>{% endblock %}
""",
    "password_reset.txt": (
        "Hello {{ name }},\n\nReset your password: {{ cta_url }}\n\n"
        "This link expires in {{ minutes }} minutes. If you did not ask for it, ignore this email.\n"
    ),
}

# HTML templates are autoescaped; the plain-text parts are not.
_env = Environment(
    loader=DictLoader(_TEMPLATES),
    autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
    undefined=StrictUndefined,
    keep_trailing_newline=True,
)


def _render(template: str, subject: str, heading: str, **context) -> tuple[str, str, str]:
    html_body = _env.get_template(f"{template}.html").render(heading=heading, **context)
    text_body = _env.get_template(f"{template}.txt").render(**context)
    return subject, html_body, text_body


def render_verification(name: str, verify_url: str) -> tuple[str, str, str]:
    return _render(
        "verification",
        "Verify your email address",
        "Verify your email",
        name=name,
        cta_url=verify_url,
        cta_label="Verify my email",
        hours=int(settings.email_verify_token_hours),
    )


def render_welcome(name: str, modules_url: str) -> tuple[str, str, str]:
    return _render("welcome", "Your account is ready", "Welcome", name=name, cta_url=modules_url, cta_label="Start learning")


def render_module_completed(name: str, module_title: str, modules_url: str) -> tuple[str, str, str]:
    return _render(
        "module_completed",
        f"Module completed: {module_title}",
        "Module completed",
        name=name,
        module_title=module_title,
        cta_url=modules_url,
        cta_label="Continue",
    )


def render_password_reset(name: str, reset_url: str) -> tuple[str, str, str]:
    return _render(
        "password_reset",
        "Reset your password",
        "Reset your password",
        name=name,
        cta_url=reset_url,
        cta_label="Choose a new password",
        minutes=int(settings.password_reset_token_minutes),
    )




def send_email_job(*, to: str, subject: str, html_body: str, text_body: str | None = None) -> dict:
    """rq job: deliver one email through the HTTP email API.

    Raises on transport or API errors so rq records the job as failed.
    """

    if not settings.email_enabled:
        log.info("email disabled, not sending to=%s subject=%s", to, subject)
        return {"sent": False, "reason": "disabled"}

    payload = {
        "from": settings.email_from,
        "to": [to],
        "subject": subject,
        "html": html_body,
    }
    if text_body:
        payload["text"] = text_body

    timeout = httpx.Timeout(float(settings.email_timeout_seconds), connect=5.0)
    with httpx.Client(timeout=timeout) as client:
        r = client.post(
            settings.email_api_url,
            json=payload,
            headers={"Authorization": f"Bearer {settings.email_api_key}"},
        )
        r.raise_for_status()

    message_id = None
    try:
        message_id = (r.json() or {}).get("id")
    except ValueError:
        message_id = None
    log.info("email sent to=%s subject=%s status=%s message_id=%s", to, subject, r.status_code, message_id)
    return {"sent": True, "status": r.status_code, "message_id": message_id}


def _enqueue(to: str, rendered: tuple[str, str, str]) -> None:
    subject, html_body, text_body = rendered
    enqueue_best_effort(
        send_email_job,
        queue=settings.rq_queue_email,
        to=to,
        subject=subject,
        html_body=html_body,
        text_body=text_body,
        job_timeout=60,
        result_ttl=60 * 60,
        failure_ttl=24 * 60 * 60,
    )



def _frontend(path: str) -> str:
    return settings.frontend_base_url.rstrip("/") + path


def enqueue_verification_email(*, email: str, name: str, token: str) -> None:
    verify_url = _frontend(f"/auth/verify-email?token={token}")
    _enqueue(email, render_verification(name, verify_url))


def enqueue_welcome_email(*, email: str, name: str) -> None:
    _enqueue(email, render_welcome(name, _frontend("/modules")))


def enqueue_module_completed_email(*, email: str, name: str, module_title: str) -> None:
    _enqueue(email, render_module_completed(name, module_title, _frontend("/modules")))


def enqueue_password_reset_email(*, email: str, name: str, token: str) -> None:
    _enqueue(email, render_password_reset(name, _frontend(f"/auth/reset-password?token={token}")))
