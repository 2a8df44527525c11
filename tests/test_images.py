import pytest

from errors import RemoteError
from extensions import db
from models import PromptSubmission, SubmissionStatus


def _failing(message):
    def generate(prompt, base_image=None):
        raise RemoteError(message)
    return generate


def _generate(client, prompt="A lighthouse at dusk", parent=None):
    payload = {"prompt": prompt}
    if parent is not None:
        payload["parentSubmissionId"] = parent
    return client.post("/api/images/generate", json=payload)


def _by_id(client, submission_id):
    submissions = client.get("/api/images").get_json()["submissions"]
    return next(entry for entry in submissions if entry["id"] == submission_id)


def test_generate_creates_root_submission(student_client, fake_image, app):
    response = _generate(student_client)
    assert response.status_code == 200
    submission = response.get_json()["submission"]
    assert submission["status"] == "SUCCESS"
    assert submission["revisionIndex"] == 0
    assert submission["rootSubmissionId"] is None
    assert submission["rootId"] == submission["id"]
    assert submission["imageData"] == "aW1hZ2UtYnl0ZXM="
    assert submission["remainingEdits"] == 2
    assert fake_image == [{"prompt": "A lighthouse at dusk", "base_image": None}]

    with app.app_context():
        stored = db.session.get(PromptSubmission, submission["id"])
        assert stored.role == "STUDENT"
        assert stored.image_mime_type == "image/png"


def test_prompt_must_be_long_enough(student_client, fake_image):
    response = _generate(student_client, prompt="cat")
    assert response.status_code == 400
    assert response.get_json()["message"] == "Please write a longer prompt to help the AI."
    assert fake_image == []


def test_only_students_generate(teacher_client, fake_image, app):
    assert _generate(teacher_client).status_code == 403
    assert _generate(app.test_client()).status_code == 401


def test_refinement_chain_is_capped_at_three(student_client, fake_image):
    root = _generate(student_client).get_json()["submission"]
    first = _generate(student_client, "Add a stormy sky", parent=root["id"]).get_json()["submission"]
    assert first["revisionIndex"] == 1
    assert first["rootSubmissionId"] == root["id"]
    assert first["parentSubmissionId"] == root["id"]
    assert fake_image[-1]["base_image"] == "data:image/png;base64,aW1hZ2UtYnl0ZXM="

    assert _by_id(student_client, root["id"])["remainingEdits"] == 1

    # refining the refinement stays in the same chain
    second = _generate(student_client, "Make it night time", parent=first["id"])
    assert second.status_code == 200
    second = second.get_json()["submission"]
    assert second["revisionIndex"] == 2
    assert second["rootSubmissionId"] == root["id"]
    assert second["remainingEdits"] == 0

    fourth = _generate(student_client, "One more tweak please", parent=second["id"])
    assert fourth.status_code == 400
    assert "no refinements remaining" in fourth.get_json()["message"]
    assert len(fake_image) == 3


def test_pending_refinement_holds_a_chain_slot(student_client, fake_image, app):
    root = _generate(student_client).get_json()["submission"]

    with app.app_context():
        parent = db.session.get(PromptSubmission, root["id"])
        for index in (1, 2):
            db.session.add(PromptSubmission(
                session_id=parent.session_id,
                student_id=parent.student_id,
                prompt="still generating",
                status=SubmissionStatus.PENDING,
                revision_index=index,
                parent_submission_id=parent.id,
                root_submission_id=parent.id,
            ))
        db.session.commit()

    response = _generate(student_client, "Add some birds", parent=root["id"])
    assert response.status_code == 400
    # pending rows are not counted as successes
    assert _by_id(student_client, root["id"])["remainingEdits"] == 2


def test_failed_generation_is_recorded(student_client, monkeypatch, app):
    from services import generation

    def broken(prompt, base_image=None):
        raise RemoteError("Model overloaded")

    monkeypatch.setattr(generation, "generate_image", broken)

    response = _generate(student_client)
    assert response.status_code == 502
    assert response.get_json()["message"] == "Model overloaded"

    with app.app_context():
        stored = db.session.query(PromptSubmission).one()
        assert stored.status == SubmissionStatus.ERROR
        assert stored.error_message == "Model overloaded"
        assert stored.image_data is None


def test_failed_refinement_frees_its_slot(student_client, fake_image, monkeypatch, app):
    from services import generation

    root = _generate(student_client).get_json()["submission"]
    working = generation.generate_image

    monkeypatch.setattr(
        generation,
        "generate_image",
        _failing("timeout"),
    )
    assert _generate(student_client, "Add a rainbow", parent=root["id"]).status_code == 502

    monkeypatch.setattr(generation, "generate_image", working)
    retry = _generate(student_client, "Add a rainbow", parent=root["id"])
    assert retry.status_code == 200
    assert retry.get_json()["submission"]["revisionIndex"] == 1

    with app.app_context():
        statuses = sorted(s.status for s in db.session.query(PromptSubmission).all())
        assert statuses == ["ERROR", "SUCCESS", "SUCCESS"]


def test_unexpected_generation_crash_marks_error(student_client, monkeypatch, app):
    from services import generation

    def crash(prompt, base_image=None):
        raise KeyError("choices")

    monkeypatch.setattr(generation, "generate_image", crash)
    response = _generate(student_client)
    assert response.status_code == 502
    with app.app_context():
        assert db.session.query(PromptSubmission).one().status == SubmissionStatus.ERROR


def test_refinement_parent_checks(student_client, other_student_client, fake_image, app):
    mine = _generate(student_client).get_json()["submission"]

    theirs = _generate(other_student_client, "Refine someone else", parent=mine["id"])
    assert theirs.status_code == 403

    missing = _generate(student_client, "Refine nothing here", parent=9999)
    assert missing.status_code == 404

    with app.app_context():
        stored = db.session.get(PromptSubmission, mine["id"])
        stored.image_data = None
        db.session.commit()

    no_image = _generate(student_client, "Refine an empty image", parent=mine["id"])
    assert no_image.status_code == 400


def test_parent_from_previous_session_is_not_found(app, teacher_client, student_client, fake_image):
    mine = _generate(student_client).get_json()["submission"]

    teacher_client.post("/api/session/start", json={"password": "daffodil"})
    fresh = teacher_client.post("/api/teacher/students/generate", json={"count": 1}).get_json()
    newcomer = app.test_client()
    newcomer.post("/api/student/login", json=fresh["credentials"][0])

    response = _generate(newcomer, "Refine an old image", parent=mine["id"])
    assert response.status_code == 404


def test_listing_visibility(teacher_client, student_client, other_student_client, fake_image, monkeypatch):
    mine = _generate(student_client, "My private picture").get_json()["submission"]
    shared = _generate(other_student_client, "A shared picture").get_json()["submission"]
    hidden = _generate(other_student_client, "A hidden picture").get_json()["submission"]
    assert other_student_client.post(
        "/api/images/share", json={"submissionId": shared["id"], "share": True}
    ).status_code == 200

    from services import generation
    monkeypatch.setattr(
        generation,
        "generate_image",
        _failing("boom"),
    )
    _generate(student_client, "This one fails")

    student_view = student_client.get("/api/images").get_json()
    ids = {entry["id"] for entry in student_view["submissions"]}
    assert ids == {mine["id"], shared["id"]}
    assert hidden["id"] not in ids
    owned = {entry["id"]: entry["ownedByCurrentUser"] for entry in student_view["submissions"]}
    assert owned == {mine["id"]: True, shared["id"]: False}

    teacher_view = teacher_client.get("/api/images").get_json()
    assert teacher_view["role"] == "teacher"
    assert len(teacher_view["submissions"]) == 4
    assert {entry["status"] for entry in teacher_view["submissions"]} == {"SUCCESS", "ERROR"}


def test_listing_is_empty_without_identity(client):
    assert client.get("/api/images").get_json()["submissions"] == []


@pytest.mark.parametrize("share", [True, False])
def test_owner_can_toggle_sharing(student_client, fake_image, share):
    mine = _generate(student_client).get_json()["submission"]
    response = student_client.post("/api/images/share", json={"submissionId": mine["id"], "share": share})
    assert response.status_code == 200
    assert response.get_json() == {"submissionId": mine["id"], "isShared": share}
    assert _by_id(student_client, mine["id"])["isShared"] is share


def test_sharing_rules(student_client, other_student_client, teacher_client, fake_image, monkeypatch):
    mine = _generate(student_client).get_json()["submission"]

    foreign = other_student_client.post("/api/images/share", json={"submissionId": mine["id"], "share": True})
    assert foreign.status_code == 403

    assert teacher_client.post(
        "/api/images/share", json={"submissionId": mine["id"], "share": True}
    ).status_code == 403

    missing_flag = student_client.post("/api/images/share", json={"submissionId": mine["id"]})
    assert missing_flag.status_code == 400

    from services import generation
    monkeypatch.setattr(
        generation,
        "generate_image",
        _failing("boom"),
    )
    _generate(student_client, "A failing picture")
    failed_id = max(entry["id"] for entry in teacher_client.get("/api/images").get_json()["submissions"])
    not_done = student_client.post("/api/images/share", json={"submissionId": failed_id, "share": True})
    assert not_done.status_code == 400
    assert not_done.get_json()["message"] == "Only completed images can be shared."


def test_concurrent_refinements_respect_chain_cap(
    file_app, same_student_clients, fake_image, meet_after_first_call, run_in_parallel
):
    from services import submissions

    first, second = same_student_clients
    root = _generate(first).get_json()["submission"]
    assert _generate(first, "Add a stormy sky", parent=root["id"]).status_code == 200

    # both requests see two active chain members before either inserts
    meet_after_first_call(submissions, "count_chain")
    responses = run_in_parallel(
        lambda: _generate(first, "Make it night time", parent=root["id"]),
        lambda: _generate(second, "Paint it in watercolour", parent=root["id"]),
    )

    assert sorted(r.status_code for r in responses) == [200, 400]
    rejected = next(r for r in responses if r.status_code == 400)
    assert rejected.get_json()["message"] == "This image has no refinements remaining."

    with file_app.app_context():
        chain = (
            db.session.query(PromptSubmission)
            .filter(PromptSubmission.status.in_(SubmissionStatus.ACTIVE))
            .order_by(PromptSubmission.revision_index)
            .all()
        )
        assert [s.revision_index for s in chain] == [0, 1, 2]


def test_numeric_prompt_is_rejected(student_client, fake_image):
    response = student_client.post("/api/images/generate", json={"prompt": 123456})
    assert response.status_code == 400
    assert response.get_json()["message"] == "prompt must be a string"
    assert fake_image == []


def test_list_values_are_rejected(student_client, fake_image):
    response = student_client.post(
        "/api/images/generate",
        json={"prompt": "A lighthouse at dusk", "parentSubmissionId": [1, 2]},
    )
    assert response.status_code == 400
    assert response.get_json()["message"] == "parentSubmissionId must be a single value"
    assert fake_image == []
