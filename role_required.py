from functools import wraps
from flask_login import current_user
from errors import AuthError

ROLE_MESSAGES = {
    "teacher": "Teacher access only.",
    "student": "Student access required.",
}

def role_required(*role_names):
    def deco(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated:
                raise AuthError()
            allowed = current_user.role in role_names
            if allowed and current_user.role == "student" and not current_user.student_id:
                allowed = False
            if not allowed:
                raise AuthError.forbidden(ROLE_MESSAGES.get(role_names[0], "Access denied."))
            return fn(*args, **kwargs)
        return wrapper
    return deco
