"""Per-student chat threads with the classroom assistant."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy import func

from errors import LimitExceeded, NotFoundError, RemoteError
from extensions import db
from models import ChatMessage, ChatThread, MessageSender, Student, utcnow
from services import generation

logger = logging.getLogger(__name__)

MAX_THREADS_PER_STUDENT = 5
MAX_HISTORY_MESSAGES = 20
THREAD_LIMIT_REACHED = "You have reached the chat limit for this session."


@dataclass
class ThreadSummary:
    thread: ChatThread
    latest_message: Optional[ChatMessage]
    message_count: int

    @property
    def awaiting_reply(self) -> bool:
        # a student message without an AI answer after it, e.g. after a provider failure
        return self.latest_message is not None and self.latest_message.sender == MessageSender.STUDENT


def _summarise(thread: ChatThread) -> ThreadSummary:
    latest = (
        db.session.query(ChatMessage)
        .filter_by(thread_id=thread.id)
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .first()
    )
    count = (
        db.session.query(func.count(ChatMessage.id)).filter_by(thread_id=thread.id).scalar()
    )
    return ThreadSummary(thread, latest, count)


def list_threads(identity) -> List[ThreadSummary]:
    threads = (
        db.session.query(ChatThread)
        .filter_by(session_id=identity.session_id, student_id=identity.student_id)
        .order_by(ChatThread.updated_at.desc(), ChatThread.id.desc())
        .all()
    )
    return [_summarise(thread) for thread in threads]


def count_threads(session_id: int, student_id: int) -> int:
    return (
        db.session.query(func.count(ChatThread.id))
        .filter_by(session_id=session_id, student_id=student_id)
        .scalar()
    )


def create_thread(identity, title: Optional[str] = None) -> ThreadSummary:
    # row lock on the owner where FOR UPDATE is supported; a no-op on SQLite
    db.session.query(Student.id).filter_by(id=identity.student_id).with_for_update().first()
    if count_threads(identity.session_id, identity.student_id) >= MAX_THREADS_PER_STUDENT:
        db.session.rollback()
        raise LimitExceeded(THREAD_LIMIT_REACHED)

    title = (title or "").strip()
    thread = ChatThread(
        title=title or "Conversation",
        session_id=identity.session_id,
        student_id=identity.student_id,
    )
    db.session.add(thread)
    # The insert opens the write transaction, so the recount sees threads
    # committed by a concurrent request of the same student.
    db.session.flush()
    thread_count = count_threads(identity.session_id, identity.student_id)
    if thread_count > MAX_THREADS_PER_STUDENT:
        db.session.rollback()
        raise LimitExceeded(THREAD_LIMIT_REACHED)
    if not title:
        thread.title = f"Conversation {thread_count}"
    db.session.commit()
    return ThreadSummary(thread, None, 0)


def get_thread(identity, thread_id: int) -> ChatThread:
    thread = db.session.get(ChatThread, thread_id)
    if (
        not thread
        or thread.session_id != identity.session_id
        or thread.student_id != identity.student_id
    ):
        raise NotFoundError("Chat not found.")
    return thread


def recent_history(thread_id: int, limit: int = MAX_HISTORY_MESSAGES) -> List[ChatMessage]:
    """The newest ``limit`` messages of a thread, oldest first."""
    newest_first = (
        db.session.query(ChatMessage)
        .filter_by(thread_id=thread_id)
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .limit(limit)
        .all()
    )
    return list(reversed(newest_first))


def post_message(identity, thread_id: int, content: str) -> Tuple[ChatMessage, ChatMessage]:
    """Store the student's message, ask the model, store the reply.

    The student message is committed before the provider is called and stays
    in place when the call fails; the thread then reports ``awaiting_reply``.
    """
    thread = get_thread(identity, thread_id)

    student_message = ChatMessage(
        thread_id=thread.id,
        student_id=identity.student_id,
        sender=MessageSender.STUDENT,
        content=content,
    )
    db.session.add(student_message)
    db.session.commit()

    history = recent_history(thread.id)
    try:
        reply = generation.chat_complete((m.sender, m.content) for m in history)
    except RemoteError as exc:
        logger.warning(
            "Chat reply failed for thread %s, message %s left unanswered: %s",
            thread.id,
            student_message.id,
            exc.message,
        )
        raise

    ai_message = ChatMessage(thread_id=thread.id, sender=MessageSender.AI, content=reply)
    db.session.add(ai_message)
    thread.updated_at = utcnow()
    db.session.commit()
    return student_message, ai_message


def session_threads(session_id: int) -> List[ChatThread]:
    """All threads of a session for the teacher, grouped by student."""
    return (
        db.session.query(ChatThread)
        .join(Student, ChatThread.student_id == Student.id)
        .filter(ChatThread.session_id == session_id)
        .order_by(Student.username.asc(), ChatThread.created_at.desc(), ChatThread.id.desc())
        .all()
    )
