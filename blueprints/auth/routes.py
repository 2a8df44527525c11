from flask import Blueprint, jsonify
from wtforms import StringField, PasswordField
from wtforms.validators import InputRequired, Length

from forms import JsonForm
from identity import STUDENT, clear_identity_cookies, set_identity_cookies
from services import classroom

bp = Blueprint("auth", __name__, url_prefix="/api/student")

class LoginForm(JsonForm):
    username = StringField(
        "Username",
        validators=[InputRequired(message="Username is required"), Length(min=3, max=64, message="Username is required")],
    )
    password = PasswordField(
        "Password",
        validators=[InputRequired(message="Password is required"), Length(max=128, message="Password is too long")],
    )

@bp.route("/login", methods=["POST"])
def login():
    form = LoginForm.from_json().validated()
    active, student = classroom.authenticate_student(form.username.data, form.password.data)
    response = jsonify({
        "sessionId": active.id,
        "role": STUDENT,
        "student": {"id": student.id, "username": student.username},
    })
    return set_identity_cookies(response, active.id, STUDENT, student.id)

@bp.route("/login", methods=["DELETE"])
@bp.route("/logout", methods=["POST"])
def logout():
    return clear_identity_cookies(jsonify({"success": True}))
