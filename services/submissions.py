"""Prompt submissions and their revision chains.

A chain is a root submission plus every refinement pointing at it through
``root_submission_id``. At most ``MAX_CHAIN_LENGTH`` members of a chain may be
PENDING or SUCCESS; failed generations free their slot again.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, or_

from errors import AuthError, LimitExceeded, NotFoundError, RemoteError, ValidationError
from extensions import db
from models import PromptSubmission, SubmissionRole, SubmissionStatus
from services import generation

logger = logging.getLogger(__name__)

MAX_CHAIN_LENGTH = 3
NO_REFINEMENTS_LEFT = "This image has no refinements remaining."


@dataclass
class SubmissionView:
    submission: PromptSubmission
    remaining_edits: int


def _chain_filter(root_id: int):
    return or_(PromptSubmission.id == root_id, PromptSubmission.root_submission_id == root_id)


def count_chain(session_id: int, root_id: int, statuses: Iterable[str]) -> int:
    return (
        db.session.query(func.count(PromptSubmission.id))
        .filter(
            PromptSubmission.session_id == session_id,
            _chain_filter(root_id),
            PromptSubmission.status.in_(tuple(statuses)),
        )
        .scalar()
    )


def remaining_edits(root_ids: Iterable[int]) -> Dict[int, int]:
    """Map each chain root to ``max(0, MAX_CHAIN_LENGTH - successful members)``."""
    root_ids = set(root_ids)
    if not root_ids:
        return {}
    root_key = func.coalesce(PromptSubmission.root_submission_id, PromptSubmission.id)
    rows = (
        db.session.query(root_key, func.count(PromptSubmission.id))
        .filter(root_key.in_(root_ids), PromptSubmission.status == SubmissionStatus.SUCCESS)
        .group_by(root_key)
        .all()
    )
    counts = {root_id: total for root_id, total in rows}
    return {root_id: max(0, MAX_CHAIN_LENGTH - counts.get(root_id, 0)) for root_id in root_ids}


def _lock_chain(root_id: int) -> None:
    # row lock on databases that support FOR UPDATE; a no-op on SQLite
    db.session.query(PromptSubmission.id).filter_by(id=root_id).with_for_update().first()


def _reserve(identity, prompt: str, parent_submission_id: Optional[int]):
    root_submission_id = None
    base_image = None

    if parent_submission_id is not None:
        parent = db.session.get(PromptSubmission, parent_submission_id)
        if not parent or parent.session_id != identity.session_id:
            raise NotFoundError("Original image not found for this session.")
        if parent.student_id != identity.student_id:
            raise AuthError.forbidden("You can only refine images you created.")
        if not parent.image_data:
            raise ValidationError("Original image data is unavailable for refinement.")

        root_submission_id = parent.root_id
        base_image = parent.data_url
        _lock_chain(root_submission_id)
        if count_chain(identity.session_id, root_submission_id, SubmissionStatus.ACTIVE) >= MAX_CHAIN_LENGTH:
            db.session.rollback()
            raise LimitExceeded(NO_REFINEMENTS_LEFT)

    submission = PromptSubmission(
        session_id=identity.session_id,
        student_id=identity.student_id,
        prompt=prompt,
        role=SubmissionRole.STUDENT,
        status=SubmissionStatus.PENDING,
        revision_index=0,
        parent_submission_id=parent_submission_id,
        root_submission_id=root_submission_id,
    )
    db.session.add(submission)

    if root_submission_id is not None:
        # The insert opens the write transaction, so the recount sees every
        # member committed by a concurrent refinement of the same chain.
        db.session.flush()
        members = count_chain(identity.session_id, root_submission_id, SubmissionStatus.ACTIVE)
        if members > MAX_CHAIN_LENGTH:
            db.session.rollback()
            raise LimitExceeded(NO_REFINEMENTS_LEFT)
        submission.revision_index = members - 1

    # the PENDING row holds its chain slot while the provider works
    db.session.commit()
    return submission, base_image


def create_submission(identity, prompt: str, parent_submission_id: Optional[int] = None) -> PromptSubmission:
    """Record a prompt and generate its image synchronously.

    Failed generations stay in the table with status ERROR; the caller gets
    a RemoteError.
    """
    submission, base_image = _reserve(identity, prompt, parent_submission_id)

    try:
        image = generation.generate_image(prompt, base_image=base_image)
    except RemoteError as exc:
        logger.warning("Generation failed for submission %s: %s", submission.id, exc.message)
        submission.mark_error(exc.message)
        db.session.commit()
        raise
    except Exception as exc:
        logger.exception("Unexpected failure generating submission %s", submission.id)
        submission.mark_error("Image generation failed")
        db.session.commit()
        raise RemoteError("Image generation failed") from exc

    submission.mark_success(image.image_data, image.mime_type)
    db.session.commit()
    return submission


def list_submissions(identity) -> List[SubmissionView]:
    """Teachers see the whole session; students see shared or own finished images."""
    if not identity.is_authenticated:
        return []

    query = db.session.query(PromptSubmission).filter(
        PromptSubmission.session_id == identity.session_id
    )
    if not identity.is_teacher:
        visible = [PromptSubmission.is_shared.is_(True)]
        if identity.student_id:
            visible.append(PromptSubmission.student_id == identity.student_id)
        query = query.filter(PromptSubmission.status == SubmissionStatus.SUCCESS, or_(*visible))

    submissions = query.order_by(
        PromptSubmission.created_at.desc(), PromptSubmission.id.desc()
    ).all()
    remaining = remaining_edits(s.root_id for s in submissions)
    return [SubmissionView(s, remaining[s.root_id]) for s in submissions]


def set_shared(identity, submission_id: int, share: bool) -> PromptSubmission:
    submission = db.session.get(PromptSubmission, submission_id)
    if (
        not submission
        or submission.session_id != identity.session_id
        or submission.student_id != identity.student_id
    ):
        raise AuthError.forbidden("You can only manage sharing for your own images.")
    if submission.status != SubmissionStatus.SUCCESS:
        raise ValidationError("Only completed images can be shared.")

    submission.is_shared = bool(share)
    db.session.commit()
    return submission
