import os
import threading

import pytest

@pytest.fixture(scope="session", autouse=True)
def _set_env():
    os.environ.setdefault("FLASK_DEBUG", "0")
    os.environ.setdefault("SECRET_KEY", "test-secret")
    os.environ.setdefault("SQLALCHEMY_DATABASE_URI", "sqlite:///:memory:")
    yield

def _build_app(database_uri, **extra):
    from app import create_app
    from extensions import db
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "SQLALCHEMY_DATABASE_URI": database_uri,
        "OPENROUTER_API_KEY": "test-key",
        "OPENROUTER_MODEL": "openai/gpt-image-1",
        "OPENROUTER_CHAT_MODEL": "google/gemini-2.5-flash",
        "TEACHER_DASHBOARD_KEY": None,
        **extra,
    })
    with app.app_context():
        db.create_all()
    return app

def _drop_app(app):
    from extensions import db
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()

@pytest.fixture()
def app():
    app = _build_app("sqlite:///:memory:")
    yield app
    _drop_app(app)

@pytest.fixture()
def file_app(tmp_path):
    """App on a file-backed SQLite database, for requests running in parallel threads."""
    app = _build_app(
        f"sqlite:///{tmp_path / 'classroom.db'}",
        SQLALCHEMY_ENGINE_OPTIONS={"connect_args": {"check_same_thread": False, "timeout": 15}},
    )
    yield app
    _drop_app(app)

@pytest.fixture()
def client(app):
    return app.test_client()

@pytest.fixture()
def teacher_client(client):
    response = client.post("/api/session/start", json={"password": "sunflower"})
    assert response.status_code == 200
    return client

@pytest.fixture()
def credentials(teacher_client):
    response = teacher_client.post("/api/teacher/students/generate", json={"count": 2})
    assert response.status_code == 200
    return response.get_json()["credentials"]

def login_student(app, credential):
    student = app.test_client()
    response = student.post("/api/student/login", json=credential)
    assert response.status_code == 200, response.get_json()
    return student

@pytest.fixture()
def student_client(app, credentials):
    return login_student(app, credentials[0])

@pytest.fixture()
def other_student_client(app, credentials):
    return login_student(app, credentials[1])

@pytest.fixture()
def fake_image(monkeypatch):
    """Replace the provider call for image generation and record its arguments."""
    from services import generation

    calls = []

    def fake_generate(prompt, base_image=None):
        calls.append({"prompt": prompt, "base_image": base_image})
        return generation.GeneratedImage(image_data="aW1hZ2UtYnl0ZXM=", mime_type="image/png")

    monkeypatch.setattr(generation, "generate_image", fake_generate)
    return calls

@pytest.fixture()
def fake_chat(monkeypatch):
    from services import generation

    calls = []

    def fake_complete(history):
        history = list(history)
        calls.append(history)
        return f"Reply to: {history[-1][1]}"
    monkeypatch.setattr(generation, "chat_complete", fake_complete)
    return calls


@pytest.fixture()
def file_teacher_client(file_app):
    teacher = file_app.test_client()
    response = teacher.post("/api/session/start", json={"password": "sunflower"})
    assert response.status_code == 200
    return teacher


@pytest.fixture()
def same_student_clients(file_app, file_teacher_client):
    """Two separately logged-in clients of one student on the file-backed app."""
    response = file_teacher_client.post("/api/teacher/students/generate", json={"count": 1})
    credential = response.get_json()["credentials"][0]
    return login_student(file_app, credential), login_student(file_app, credential)


@pytest.fixture()
def run_in_parallel():
    """Run zero-argument callables in their own threads; results come back in call order."""

    def run(*calls):
        results = [None] * len(calls)
        errors = []

        def target(index, call):
            try:
                results[index] = call()
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=target, args=(i, call)) for i, call in enumerate(calls)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)
        assert not any(thread.is_alive() for thread in threads)
        assert not errors, errors
        return results

    return run


@pytest.fixture()
def meet_after_first_call(monkeypatch):
    """Hold each thread after its first call to ``module.name`` until all parties got there.

    Both requests then act on the same stale read, the window a cap check has
    to survive.
    """

    def install(module, name, parties=2):
        original = getattr(module, name)
        barrier = threading.Barrier(parties, timeout=20)
        state = threading.local()

        def wrapper(*args, **kwargs):
            result = original(*args, **kwargs)
            if not getattr(state, "passed", False):
                state.passed = True
                barrier.wait()
            return result

        monkeypatch.setattr(module, name, wrapper)

    return install
