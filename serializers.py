"""JSON shapes returned by the API."""
from datetime import timezone


def isoformat(value):
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def session_to_dict(classroom):
    return {
        "id": classroom.id,
        "createdAt": isoformat(classroom.created_at),
        "endedAt": isoformat(classroom.ended_at),
        "isActive": classroom.is_active,
    }


def submission_to_dict(submission, include_image=True):
    payload = {
        "id": submission.id,
        "prompt": submission.prompt,
        "role": submission.role,
        "createdAt": isoformat(submission.created_at),
        "status": submission.status,
        "revisionIndex": submission.revision_index,
        "parentSubmissionId": submission.parent_submission_id,
        "rootSubmissionId": submission.root_submission_id,
        "rootId": submission.root_id,
        "errorMessage": submission.error_message,
        "studentId": submission.student_id,
        "studentUsername": submission.student.username if submission.student else None,
        "isShared": submission.is_shared,
    }
    if include_image:
        payload["imageData"] = submission.image_data
        payload["imageMimeType"] = submission.image_mime_type
    else:
        payload["hasImage"] = bool(submission.image_data)
    return payload


def message_to_dict(message):
    return {
        "id": message.id,
        "content": message.content,
        "sender": message.sender,
        "createdAt": isoformat(message.created_at),
    }


def thread_to_dict(thread):
    return {
        "id": thread.id,
        "title": thread.title,
        "createdAt": isoformat(thread.created_at),
        "updatedAt": isoformat(thread.updated_at),
    }


def thread_summary_to_dict(summary):
    return {
        **thread_to_dict(summary.thread),
        "latestMessage": summary.latest_message.content if summary.latest_message else None,
        "messageCount": summary.message_count,
        "awaitingReply": summary.awaiting_reply,
    }
