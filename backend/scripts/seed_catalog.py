from __future__ import annotations

import argparse
import os
import sys
from datetime import datetime, timezone

# Force /app into path for Docker compatibility
sys.path.append("/app")
sys.path.append(os.getcwd())

from sqlalchemy import select

from app.db.session import SessionLocal
from app.models.module import Chapter, Content, ContentType, Module
from app.models.quiz import Quiz
from app.models.user import User, UserRole
from app.core.security import hash_password
from app.services.quizzes import parse_questions

VIDEO_URL = "https://eveil-chretien.com/video/Les_5_types_d_enseignement.mp4"
AUDIO_URL = "https://eveil-chretien.com/audio/Cet-arme-que-le-diable-contre-toi.mp3"

CATALOG: list[dict] = [
    {
        "title": "Introduction à la Foi Céleste",
        "description": "Ce module vous présente les fondements de la foi céleste et son histoire.",
        "thumbnail": "https://images.unsplash.com/photo-1519817914152-22d216bb9170?w=800&auto=format&fit=crop",
        "is_active": True,
        "chapters": ["Histoire de l'Église Céleste", "Fondateurs et Vision", "Structure Organisationnelle"],
    },
    {
        "title": "Les Principes Fondamentaux",
        "description": "Découvrez les principes fondamentaux qui guident notre pratique spirituelle.",
        "thumbnail": "https://images.unsplash.com/photo-1507692049790-de58290a4334?w=800&auto=format&fit=crop",
        "is_active": True,
        "chapters": ["Les Dix Commandements", "La Trinité", "La Foi et les Œuvres", "La Vie Éternelle"],
    },
    {
        "title": "Pratiques de Prière",
        "description": "Apprenez les différentes méthodes de prière et leur importance.",
        "thumbnail": "https://images.unsplash.com/photo-1517021897933-0e0319cfbc28?w=800&auto=format&fit=crop",
        "is_active": True,
        "chapters": ["Prière Individuelle", "Prière Collective", "Méditation et Contemplation"],
    },
    {
        "title": "Étude des Écritures",
        "description": "Une exploration approfondie des textes sacrés et leur interprétation.",
        "thumbnail": "https://images.unsplash.com/photo-1504052434569-70ad5836ab65?w=800&auto=format&fit=crop",
        "is_active": False,
        "chapters": ["Ancien Testament", "Nouveau Testament"],
    },
]


def _sample_questions(chapter_title: str) -> list[dict]:
    items: list[dict] = []
    for i, correct in enumerate([0, 1, 2, 3]):
        items.append(
            {
                "question": f"Question {i + 1} sur {chapter_title}",
                "type": "multiple_choice",
                "options": ["Option A", "Option B", "Option C", "Option D"],
                "correct_answer": correct,
                "explanation": "Explication de la réponse correcte",
            }
        )
    items.append(
        {
            "question": f"{chapter_title} fait partie du parcours.",
            "type": "true_false",
            "correct_answer": True,
        }
    )
    # Same validation path as the admin API.
    return parse_questions(items)


def ensure_user(db, *, email: str, first_name: str, last_name: str, role: UserRole, password: str) -> User:
    existing = db.scalar(select(User).where(User.email == email))
    if existing is not None:
        return existing

    u = User(
        email=email,
        first_name=first_name,
        last_name=last_name,
        role=role,
        password_hash=hash_password(password),
        email_verified_at=datetime.now(timezone.utc),
    )
    db.add(u)
    db.commit()
    db.refresh(u)
    return u


def ensure_module(db, *, order: int, entry: dict) -> tuple[Module, bool]:
    existing = db.scalar(select(Module).where(Module.title == entry["title"]))
    if existing is not None:
        return existing, False

    module = Module(
        title=entry["title"],
        description=entry["description"],
        thumbnail=entry["thumbnail"],
        order=order,
        is_active=entry["is_active"],
    )
    db.add(module)
    db.flush()

    for ch_order, ch_title in enumerate(entry["chapters"], start=1):
        # Only the first chapter of an inactive module is kept active.
        chapter = Chapter(
            module_id=module.id,
            title=f"Chapitre {ch_order} - {ch_title}",
            description=f"Description détaillée du chapitre {ch_order} du module {entry['title']}.",
            order=ch_order,
            is_active=entry["is_active"] or ch_order == 1,
        )
        db.add(chapter)
        db.flush()

        is_video = ch_order % 3 != 0
        db.add(
            Content(
                chapter_id=chapter.id,
                title=f"{'Vidéo' if is_video else 'Audio'} - {chapter.title}",
                description=f"Contenu {'vidéo' if is_video else 'audio'} pour {chapter.title}",
                type=ContentType.video if is_video else ContentType.audio,
                url=VIDEO_URL if is_video else AUDIO_URL,
                duration=120 + 60 * ch_order,
                order=1,
                is_active=True,
            )
        )
        db.add(
            Quiz(
                chapter_id=chapter.id,
                title=f"Quiz - {chapter.title}",
                passing_score=70,
                questions=_sample_questions(chapter.title),
            )
        )

    return module, True


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the Ecole LMS sample catalog and an admin account")
    parser.add_argument("--admin-email", default=os.environ.get("LMS_SEED_ADMIN_EMAIL", "admin@example.com"))
    parser.add_argument("--admin-password", default=os.environ.get("LMS_SEED_ADMIN_PASSWORD", "Admin123!"))
    parser.add_argument("--learner-email", default=os.environ.get("LMS_SEED_LEARNER_EMAIL", "jean@example.com"))
    parser.add_argument("--learner-password", default=os.environ.get("LMS_SEED_LEARNER_PASSWORD", "Password123!"))
    args = parser.parse_args()

    with SessionLocal() as db:
        ensure_user(
            db,
            email=args.admin_email.strip().lower(),
            first_name="Super",
            last_name="Admin",
            role=UserRole.admin,
            password=args.admin_password,
        )
        ensure_user(
            db,
            email=args.learner_email.strip().lower(),
            first_name="Jean",
            last_name="Dupont",
            role=UserRole.user,
            password=args.learner_password,
        )

        created = 0
        for order, entry in enumerate(CATALOG, start=1):
            _, is_new = ensure_module(db, order=order, entry=entry)
            created += int(is_new)
        db.commit()

    print(f"Modules created: {created} (of {len(CATALOG)})")
    print("Users created/ensured:")
    print(f"  admin: {args.admin_email} / {args.admin_password}")
    print(f"  learner: {args.learner_email} / {args.learner_password}")


if __name__ == "__main__":
    main()
