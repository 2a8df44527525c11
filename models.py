from datetime import datetime, timezone
from passlib.hash import pbkdf2_sha256
from extensions import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def hash_password(raw):
    if raw is None:
        raise ValueError("Password is required")
    try:
        raw.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise ValueError("Invalid password") from exc
    return pbkdf2_sha256.hash(raw)


def verify_password(raw, password_hash):
    if raw is None or not password_hash:
        return False
    try:
        raw.encode("utf-8")
    except UnicodeEncodeError:
        return False
    try:
        return pbkdf2_sha256.verify(raw, password_hash)
    except ValueError:
        return False


class SubmissionStatus:
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"

    # statuses that occupy a slot in a revision chain
    ACTIVE = (PENDING, SUCCESS)


class SubmissionRole:
    STUDENT = "STUDENT"
    TEACHER = "TEACHER"


class MessageSender:
    STUDENT = "STUDENT"
    AI = "AI"


class ClassSession(db.Model):
    __tablename__ = "class_sessions"

    id = db.Column(db.Integer, primary_key=True)
    password_hash = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    ended_at = db.Column(db.DateTime(timezone=True))

    students = db.relationship("Student", back_populates="session", order_by="Student.username")
    submissions = db.relationship(
        "PromptSubmission",
        back_populates="session",
        order_by="PromptSubmission.created_at",
    )

    __table_args__ = (
        # only one classroom session may be live at a time
        db.Index(
            "uq_class_sessions_single_active",
            "is_active",
            unique=True,
            sqlite_where=db.text("is_active = 1"),
            postgresql_where=db.text("is_active"),
        ),
    )

    def set_password(self, raw):
        self.password_hash = hash_password(raw)

    def check_password(self, raw):
        return verify_password(raw, self.password_hash)

    def end(self):
        self.is_active = False
        self.ended_at = utcnow()


class Student(db.Model):
    __tablename__ = "students"

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("class_sessions.id"), nullable=False, index=True)
    username = db.Column(db.String(64), nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    session = db.relationship("ClassSession", back_populates="students")

    __table_args__ = (
        db.UniqueConstraint("session_id", "username", name="uq_student_session_username"),
    )

    def set_password(self, raw):
        self.password_hash = hash_password(raw)

    def check_password(self, raw):
        return verify_password(raw, self.password_hash)


class PromptSubmission(db.Model):
    __tablename__ = "prompt_submissions"

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("class_sessions.id"), nullable=False, index=True)
    student_id = db.Column(
        db.Integer, db.ForeignKey("students.id", ondelete="SET NULL"), index=True
    )
    prompt = db.Column(db.Text, nullable=False)
    role = db.Column(db.String(20), nullable=False, default=SubmissionRole.STUDENT)
    status = db.Column(db.String(20), nullable=False, default=SubmissionStatus.PENDING)
    image_data = db.Column(db.Text)  # base64, no data: prefix
    image_mime_type = db.Column(db.String(120))
    error_message = db.Column(db.Text)
    is_shared = db.Column(db.Boolean, nullable=False, default=False)
    revision_index = db.Column(db.Integer, nullable=False, default=0)
    parent_submission_id = db.Column(
        db.Integer, db.ForeignKey("prompt_submissions.id", ondelete="SET NULL")
    )
    root_submission_id = db.Column(
        db.Integer, db.ForeignKey("prompt_submissions.id", ondelete="SET NULL"), index=True
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    session = db.relationship("ClassSession", back_populates="submissions")
    student = db.relationship("Student")

    @property
    def root_id(self):
        return self.root_submission_id or self.id

    @property
    def data_url(self):
        if not self.image_data:
            return None
        return f"data:{self.image_mime_type or 'image/png'};base64,{self.image_data}"

    def mark_success(self, image_data: str, mime_type: str):
        if self.status != SubmissionStatus.PENDING:
            raise ValueError(f"Submission {self.id} already finished as {self.status}")
        self.status = SubmissionStatus.SUCCESS
        self.image_data = image_data
        self.image_mime_type = mime_type

    def mark_error(self, message: str):
        if self.status != SubmissionStatus.PENDING:
            raise ValueError(f"Submission {self.id} already finished as {self.status}")
        self.status = SubmissionStatus.ERROR
        self.error_message = message


class ChatThread(db.Model):
    __tablename__ = "chat_threads"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(80), nullable=False)
    session_id = db.Column(db.Integer, db.ForeignKey("class_sessions.id"), nullable=False, index=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    student = db.relationship("Student")
    messages = db.relationship(
        "ChatMessage",
        back_populates="thread",
        order_by="ChatMessage.id",
    )


class ChatMessage(db.Model):
    __tablename__ = "chat_messages"

    id = db.Column(db.Integer, primary_key=True)
    thread_id = db.Column(db.Integer, db.ForeignKey("chat_threads.id"), nullable=False, index=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id", ondelete="SET NULL"))
    sender = db.Column(db.String(20), nullable=False)  # 'STUDENT' or 'AI'
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    thread = db.relationship("ChatThread", back_populates="messages")
