import os
from dotenv import load_dotenv
load_dotenv()

DEFAULT_CHAT_SYSTEM_PROMPT = (
    "You are a friendly classroom assistant. Keep answers short, age-appropriate "
    "and encourage students to think for themselves."
)

class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")
    SQLALCHEMY_DATABASE_URI = os.getenv("SQLALCHEMY_DATABASE_URI", "sqlite:///classroom.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    MAX_CONTENT_LENGTH = int(os.getenv("MAX_CONTENT_LENGTH", 1 * 1024 * 1024))  # JSON bodies only

    # Remote generation provider (OpenRouter speaks the OpenAI wire format)
    OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")
    OPENROUTER_BASE_URL = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")
    OPENROUTER_MODEL = os.getenv("OPENROUTER_MODEL", "openai/gpt-image-1")
    OPENROUTER_CHAT_MODEL = (
        os.getenv("OPENROUTER_CHAT_MODEL")
        or os.getenv("OPENROUTER_MODEL")
        or "google/gemini-2.5-flash-preview-09-2025"
    )
    APP_URL = os.getenv("APP_URL", "http://localhost:5000")
    GENERATION_TIMEOUT = float(os.getenv("GENERATION_TIMEOUT", 60))
    CHAT_SYSTEM_PROMPT = os.getenv("CHAT_SYSTEM_PROMPT", DEFAULT_CHAT_SYSTEM_PROMPT)

    # Classroom identity
    TEACHER_DASHBOARD_KEY = (os.getenv("TEACHER_DASHBOARD_KEY") or "").strip() or None
    IDENTITY_MAX_AGE = int(os.getenv("IDENTITY_MAX_AGE", 60 * 60 * 6))
    IDENTITY_COOKIE_SECURE = os.getenv("IDENTITY_COOKIE_SECURE") == "1"

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.getenv("LOG_FORMAT", "text")
