from flask import Blueprint, jsonify
from flask_login import current_user
from wtforms import StringField, TextAreaField
from wtforms.validators import InputRequired, Length, Optional

from forms import JsonForm
from identity import STUDENT
from role_required import role_required
from serializers import message_to_dict, thread_summary_to_dict, thread_to_dict
from services import chat_threads

bp = Blueprint("chat", __name__, url_prefix="/api/chat")


def _strip(value):
    return value.strip() if isinstance(value, str) else value


class ThreadForm(JsonForm):
    title = StringField("Title", filters=[_strip], validators=[Optional(), Length(max=80)])


class MessageForm(JsonForm):
    content = TextAreaField(
        "Message",
        filters=[_strip],
        validators=[
            InputRequired(message="Message cannot be empty"),
            Length(min=1, message="Message cannot be empty"),
            Length(max=4000, message="Message is too long"),
        ],
    )


@bp.route("/threads", methods=["GET"])
@role_required(STUDENT)
def threads():
    summaries = chat_threads.list_threads(current_user)
    return jsonify({
        "threads": [thread_summary_to_dict(summary) for summary in summaries],
        "limit": chat_threads.MAX_THREADS_PER_STUDENT,
    })


@bp.route("/threads", methods=["POST"])
@role_required(STUDENT)
def create_thread():
    form = ThreadForm.from_json().validated()
    summary = chat_threads.create_thread(current_user, form.title.data)
    return jsonify({
        "thread": thread_summary_to_dict(summary),
        "limit": chat_threads.MAX_THREADS_PER_STUDENT,
    })


@bp.route("/threads/<int:thread_id>/messages", methods=["GET"])
@role_required(STUDENT)
def messages(thread_id: int):
    thread = chat_threads.get_thread(current_user, thread_id)
    return jsonify({
        "thread": thread_to_dict(thread),
        "messages": [message_to_dict(message) for message in thread.messages],
    })


@bp.route("/threads/<int:thread_id>/messages", methods=["POST"])
@role_required(STUDENT)
def post_message(thread_id: int):
    # ownership is checked before the body is validated
    chat_threads.get_thread(current_user, thread_id)
    form = MessageForm.from_json().validated()
    student_message, ai_message = chat_threads.post_message(current_user, thread_id, form.content.data)
    return jsonify({"messages": [message_to_dict(student_message), message_to_dict(ai_message)]})
