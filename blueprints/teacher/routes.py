from __future__ import annotations

import json

from flask import Blueprint, Response, jsonify, send_file
from flask_login import current_user
from wtforms import IntegerField
from wtforms.validators import InputRequired, NumberRange

from errors import NotFoundError
from extensions import db
from forms import JsonForm
from identity import TEACHER
from models import ChatThread, ClassSession, PromptSubmission
from role_required import role_required
from serializers import (
    message_to_dict,
    session_to_dict,
    submission_to_dict,
    thread_to_dict,
)
from services import chat_threads, classroom, export_pdf

bp = Blueprint("teacher", __name__, url_prefix="/api/teacher")

MAX_STUDENTS_PER_BATCH = 50


class GenerateStudentsForm(JsonForm):
    count = IntegerField(
        "Number of students",
        validators=[
            InputRequired(message="count is required"),
            NumberRange(min=1, max=MAX_STUDENTS_PER_BATCH, message="count must be between 1 and 50"),
        ],
    )


def _current_session() -> ClassSession:
    active = db.session.get(ClassSession, current_user.session_id)
    if not active:
        raise NotFoundError("Session not found.")
    return active


def _session_submissions(session_id: int, newest_first: bool):
    order = PromptSubmission.created_at.desc() if newest_first else PromptSubmission.created_at.asc()
    tiebreak = PromptSubmission.id.desc() if newest_first else PromptSubmission.id.asc()
    return (
        db.session.query(PromptSubmission)
        .filter_by(session_id=session_id)
        .order_by(order, tiebreak)
        .all()
    )


@bp.route("/activity")
@role_required(TEACHER)
def activity():
    active = _current_session()
    return jsonify({
        "session": session_to_dict(active),
        "submissions": [
            submission_to_dict(submission)
            for submission in _session_submissions(active.id, newest_first=True)
        ],
    })


@bp.route("/export")
@role_required(TEACHER)
def export():
    active = _current_session()
    payload = {
        "session": session_to_dict(active),
        "entries": [
            submission_to_dict(submission, include_image=False)
            for submission in _session_submissions(active.id, newest_first=False)
        ],
    }
    return Response(
        json.dumps(payload, indent=2),
        mimetype="application/json",
        headers={"Content-Disposition": f'attachment; filename="session-{active.id}.json"'},
    )


@bp.route("/students/generate", methods=["POST"])
@role_required(TEACHER)
def generate_students():
    form = GenerateStudentsForm.from_json().validated()
    credentials = classroom.generate_students(current_user.session_id, form.count.data)
    return jsonify({"credentials": credentials})


@bp.route("/chats")
@role_required(TEACHER)
def chats():
    threads = chat_threads.session_threads(current_user.session_id)
    return jsonify({
        "threads": [
            {
                **thread_to_dict(thread),
                "student": {"id": thread.student.id, "username": thread.student.username}
                if thread.student
                else None,
                "messages": [message_to_dict(message) for message in thread.messages],
            }
            for thread in threads
        ]
    })


@bp.route("/chats/<int:thread_id>/transcript.pdf")
@role_required(TEACHER)
def chat_transcript(thread_id: int):
    thread = db.session.get(ChatThread, thread_id)
    if not thread or thread.session_id != current_user.session_id:
        raise NotFoundError("Chat not found.")

    conversation = [
        {
            "sender": message.sender,
            "content": message.content,
            "timestamp": message.created_at.strftime("%d %b %Y %H:%M") if message.created_at else None,
        }
        for message in thread.messages
    ]
    username = thread.student.username if thread.student else None
    details = {
        "Session": str(thread.session_id),
        "Started": thread.created_at.strftime("%d %b %Y %H:%M") if thread.created_at else "-",
        "Messages": str(len(conversation)),
    }
    pdf_stream = export_pdf.build_thread_pdf(thread.title, username, conversation, details)

    return send_file(
        pdf_stream,
        mimetype="application/pdf",
        as_attachment=True,
        download_name=f"chat_{thread.id}_{(username or 'student').replace(' ', '_')}.pdf",
    )
