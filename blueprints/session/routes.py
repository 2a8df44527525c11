from flask import Blueprint, jsonify
from flask_login import current_user
from wtforms import SelectField, StringField
from wtforms.validators import InputRequired, Length, Optional

from extensions import db
from forms import JsonForm
from identity import (
    ROLES,
    STUDENT,
    TEACHER,
    clear_identity_cookies,
    read_identity_cookies,
    set_identity_cookies,
)
from models import ClassSession, Student
from role_required import role_required
from serializers import isoformat
from services import classroom

bp = Blueprint("session", __name__, url_prefix="/api/session")

PASSWORD_TOO_SHORT = f"Password must be at least {classroom.MIN_SESSION_PASSWORD} characters"


class StartSessionForm(JsonForm):
    password = StringField(
        "Session password",
        validators=[
            InputRequired(message=PASSWORD_TOO_SHORT),
            Length(min=classroom.MIN_SESSION_PASSWORD, max=128, message=PASSWORD_TOO_SHORT),
        ],
    )


class JoinSessionForm(JsonForm):
    password = StringField("Session password", validators=[InputRequired(message="Password is required")])
    role = SelectField("Role", choices=[(role, role) for role in ROLES], default=STUDENT)
    teacher_key = StringField("Teacher key", validators=[Optional(), Length(max=256)])


def _cleared(payload, status=200):
    response = jsonify(payload)
    response.status_code = status
    return clear_identity_cookies(response)


@bp.route("", methods=["GET"])
def current():
    session_id, role, student_id = read_identity_cookies()
    if not session_id:
        return jsonify({"session": None})

    active = db.session.get(ClassSession, session_id)
    if not active or not active.is_active:
        return _cleared({"session": None})

    student = None
    if student_id:
        record = db.session.get(Student, student_id)
        if not record or record.session_id != active.id:
            return _cleared({"session": None})
        student = {"id": record.id, "username": record.username}

    return jsonify({
        "session": {
            "id": active.id,
            "createdAt": isoformat(active.created_at),
            "role": role,
            "student": student,
        }
    })


@bp.route("", methods=["DELETE"])
def leave():
    return _cleared({"success": True})


@bp.route("/start", methods=["POST"])
def start():
    form = StartSessionForm.from_json().validated()
    active = classroom.start_session(form.password.data)
    response = jsonify({"sessionId": active.id, "createdAt": isoformat(active.created_at)})
    return set_identity_cookies(response, active.id, TEACHER)


@bp.route("/join", methods=["POST"])
def join():
    form = JoinSessionForm.from_json().validated()
    active = classroom.join_session(form.password.data, form.role.data, form.teacher_key.data)
    response = jsonify({
        "sessionId": active.id,
        "role": form.role.data,
        "createdAt": isoformat(active.created_at),
    })
    # a password join carries no student id; students get theirs from
    # /api/student/login, and a logged-in student keeps it when re-joining
    return set_identity_cookies(
        response,
        active.id,
        form.role.data,
        keep_student=form.role.data == STUDENT,
    )


@bp.route("/end", methods=["POST"])
@role_required(TEACHER)
def end():
    classroom.end_session(current_user.session_id)
    return _cleared({"success": True})
