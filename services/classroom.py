"""Classroom session lifecycle and student credentials."""
from __future__ import annotations

import logging
import secrets
from typing import List, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from errors import AuthError, InternalError, NotFoundError, ValidationError
from extensions import db
from identity import STUDENT, TEACHER
from models import ClassSession, Student, utcnow

logger = logging.getLogger(__name__)

MIN_SESSION_PASSWORD = 4
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz23456789"
CODE_LENGTH = 8
MAX_BATCH_ATTEMPTS = 3


def random_code(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def get_active_session() -> Optional[ClassSession]:
    return (
        db.session.query(ClassSession)
        .filter_by(is_active=True)
        .order_by(ClassSession.created_at.desc())
        .first()
    )


def start_session(password: str) -> ClassSession:
    """End every live session, then open a new one guarded by ``password``."""
    if not password or len(password) < MIN_SESSION_PASSWORD:
        raise ValidationError(f"Password must be at least {MIN_SESSION_PASSWORD} characters")

    ended = (
        db.session.query(ClassSession)
        .filter_by(is_active=True)
        .update({"is_active": False, "ended_at": utcnow()}, synchronize_session="fetch")
    )
    # the deactivation has to reach the database before the new active row
    db.session.flush()

    classroom = ClassSession(is_active=True)
    try:
        classroom.set_password(password)
    except ValueError as exc:
        db.session.rollback()
        raise ValidationError(str(exc)) from exc
    db.session.add(classroom)
    try:
        db.session.commit()
    except IntegrityError as exc:
        # another teacher started a session between our update and insert
        db.session.rollback()
        raise ValidationError("Another session was started at the same time. Try again.") from exc

    logger.info("Started classroom session %s (ended %s previous)", classroom.id, ended)
    return classroom


def join_session(password: str, role: str = STUDENT, teacher_key: Optional[str] = None) -> ClassSession:
    classroom = get_active_session()
    if not classroom:
        raise NotFoundError("No active session. Please ask the teacher to start one.")

    if not classroom.check_password(password):
        raise AuthError("Incorrect password. Try again.")

    if role == TEACHER:
        required_key = current_app.config.get("TEACHER_DASHBOARD_KEY")
        if required_key and teacher_key != required_key:
            raise AuthError.forbidden("Teacher dashboard key is invalid.")

    return classroom


def end_session(session_id: int) -> None:
    classroom = db.session.get(ClassSession, session_id)
    if classroom and classroom.is_active:
        classroom.end()
        db.session.commit()
        logger.info("Ended classroom session %s", session_id)


def generate_students(session_id: int, count: int) -> List[dict]:
    """Create ``count`` students and return their plaintext credentials once.

    Usernames are unique per session (case-insensitive). The whole batch is
    one transaction; if the unique constraint fires because of a concurrent
    batch, the batch is rebuilt against a fresh view of the taken names.
    """
    for attempt in range(1, MAX_BATCH_ATTEMPTS + 1):
        taken = {
            username.lower()
            for (username,) in db.session.query(Student.username).filter_by(session_id=session_id)
        }
        credentials = []
        for _ in range(count):
            username = random_code()
            while username.lower() in taken:
                username = random_code()
            taken.add(username.lower())
            password = random_code()

            student = Student(session_id=session_id, username=username)
            student.set_password(password)
            db.session.add(student)
            credentials.append({"username": username, "password": password})

        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            logger.warning(
                "Username collision while generating students for session %s (attempt %d)",
                session_id,
                attempt,
            )
            continue

        logger.info("Generated %d student credentials for session %s", count, session_id)
        return credentials

    raise InternalError("Unable to generate student credentials")


def authenticate_student(username: str, password: str):
    classroom = get_active_session()
    if not classroom:
        raise NotFoundError("No active classroom session. Please ask your teacher to begin one.")

    student = (
        db.session.query(Student)
        .filter_by(session_id=classroom.id, username=username)
        .first()
    )
    if not student:
        raise NotFoundError("Account not found for this session.")
    if not student.check_password(password):
        raise AuthError("Incorrect password. Please try again.")
    return classroom, student
