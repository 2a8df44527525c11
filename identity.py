"""Signed-cookie identity for classroom participants.

The caller's state lives in three http-only cookies (session id, role and
student id), each signed with the app secret and valid for IDENTITY_MAX_AGE
seconds. Flask-Login's request loader turns them into a ``ClassroomIdentity``
on every request; anything stale or tampered with is treated as anonymous.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from flask import current_app, g, request
from flask_login import AnonymousUserMixin, UserMixin
from itsdangerous import BadSignature, URLSafeTimedSerializer

from extensions import db, login_manager
from models import ClassSession, Student

SESSION_COOKIE = "classroom_session_id"
ROLE_COOKIE = "classroom_role"
STUDENT_COOKIE = "classroom_student_id"

TEACHER = "teacher"
STUDENT = "student"
ROLES = (STUDENT, TEACHER)


@dataclass
class ClassroomIdentity(UserMixin):
    session_id: int
    role: str
    student_id: Optional[int] = None
    username: Optional[str] = None

    def get_id(self):
        return f"{self.role}:{self.session_id}:{self.student_id or ''}"

    @property
    def is_teacher(self) -> bool:
        return self.role == TEACHER

    @property
    def is_student(self) -> bool:
        return self.role == STUDENT and self.student_id is not None


class AnonymousIdentity(AnonymousUserMixin):
    session_id = None
    role = None
    student_id = None
    username = None
    is_teacher = False
    is_student = False


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.secret_key, salt="classroom-identity")


def _read_cookie(name: str):
    raw = request.cookies.get(name)
    if not raw:
        return None
    try:
        return _serializer().loads(raw, max_age=current_app.config["IDENTITY_MAX_AGE"])
    except BadSignature:
        return None


def read_identity_cookies():
    """Return the raw ``(session_id, role, student_id)`` triple, unverified against the DB."""
    return _read_cookie(SESSION_COOKIE), _read_cookie(ROLE_COOKIE), _read_cookie(STUDENT_COOKIE)


@login_manager.request_loader
def load_identity(_request):
    session_id, role, student_id = read_identity_cookies()
    if not session_id or role not in ROLES:
        return None

    classroom = db.session.get(ClassSession, session_id)
    if not classroom or not classroom.is_active:
        return None

    if role == STUDENT:
        student = db.session.get(Student, student_id) if student_id else None
        if not student or student.session_id != classroom.id:
            return None
        g.classroom_role = role
        return ClassroomIdentity(classroom.id, role, student.id, student.username)

    g.classroom_role = role
    return ClassroomIdentity(classroom.id, role)


def set_identity_cookies(
    response,
    session_id: int,
    role: str,
    student_id: Optional[int] = None,
    keep_student: bool = False,
):
    """Write the identity cookies.

    Without ``student_id`` the student cookie is removed, unless
    ``keep_student`` is set; a student re-joining by password keeps the
    account they logged in with.
    """
    serializer = _serializer()
    options = {
        "max_age": current_app.config["IDENTITY_MAX_AGE"],
        "httponly": True,
        "samesite": "Lax",
        "secure": current_app.config.get("IDENTITY_COOKIE_SECURE", False),
        "path": "/",
    }
    response.set_cookie(SESSION_COOKIE, serializer.dumps(session_id), **options)
    response.set_cookie(ROLE_COOKIE, serializer.dumps(role), **options)
    if student_id is not None:
        response.set_cookie(STUDENT_COOKIE, serializer.dumps(student_id), **options)
    elif not keep_student:
        response.delete_cookie(STUDENT_COOKIE, path="/")
    return response


def clear_identity_cookies(response):
    for name in (SESSION_COOKIE, ROLE_COOKIE, STUDENT_COOKIE):
        response.delete_cookie(name, path="/")
    return response
