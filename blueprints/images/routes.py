from flask import Blueprint, jsonify
from flask_login import current_user
from wtforms import BooleanField, IntegerField, TextAreaField
from wtforms.validators import InputRequired, Length, Optional, ValidationError

from forms import JsonForm
from identity import STUDENT
from role_required import role_required
from serializers import submission_to_dict
from services import submissions

bp = Blueprint("images", __name__, url_prefix="/api/images")

PROMPT_TOO_SHORT = "Please write a longer prompt to help the AI."


class GenerateForm(JsonForm):
    prompt = TextAreaField(
        "Prompt",
        validators=[
            InputRequired(message=PROMPT_TOO_SHORT),
            Length(min=5, message=PROMPT_TOO_SHORT),
            Length(max=4000, message="Prompt is too long."),
        ],
    )
    parent_submission_id = IntegerField("Refine image", validators=[Optional()])


class ShareForm(JsonForm):
    submission_id = IntegerField("Image", validators=[InputRequired(message="submissionId is required")])
    share = BooleanField("Share with class")

    def validate_share(self, field):
        if not field.raw_data:
            raise ValidationError("share is required")


@bp.route("", methods=["GET"])
def index():
    views = submissions.list_submissions(current_user)
    payload = []
    for view in views:
        entry = submission_to_dict(view.submission)
        entry["remainingEdits"] = view.remaining_edits
        entry["ownedByCurrentUser"] = bool(
            current_user.student_id and view.submission.student_id == current_user.student_id
        )
        payload.append(entry)
    return jsonify({"submissions": payload, "role": current_user.role})


@bp.route("/generate", methods=["POST"])
@role_required(STUDENT)
def generate():
    form = GenerateForm.from_json().validated()
    submission = submissions.create_submission(
        current_user,
        form.prompt.data,
        parent_submission_id=form.parent_submission_id.data,
    )
    remaining = submissions.remaining_edits([submission.root_id])[submission.root_id]
    entry = submission_to_dict(submission)
    entry["remainingEdits"] = remaining
    return jsonify({"submission": entry})


@bp.route("/share", methods=["POST"])
@role_required(STUDENT)
def share():
    form = ShareForm.from_json().validated()
    submission = submissions.set_shared(current_user, form.submission_id.data, form.share.data)
    return jsonify({"submissionId": submission.id, "isShared": submission.is_shared})
