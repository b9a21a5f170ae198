# whatsflow/core/config.py
"""
Application configuration - loads from environment variables.
Single source of truth for all settings.
"""
import os
from typing import Optional
from urllib.parse import quote_plus
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables FIRST
BASE_DIR = Path(__file__).resolve().parent.parent.parent
env_path = BASE_DIR / '.env'
load_dotenv(dotenv_path=env_path)

# ────────────────────────────────────────────
# WhatsApp Configuration
# ────────────────────────────────────────────
VERIFY_TOKEN: str = os.getenv("VERIFY_TOKEN", "")
WHATSAPP_HTTP_TIMEOUT: float = float(os.getenv("WHATSAPP_HTTP_TIMEOUT", "15"))

# ────────────────────────────────────────────
# AI Providers
# ────────────────────────────────────────────
OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-3.5-turbo")
GEMINI_API_KEY: Optional[str] = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_GEMINI_API_KEY")
GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
GEMINI_API_BASE: str = os.getenv("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta")

AI_MAX_TOKENS: int = int(os.getenv("AI_MAX_TOKENS", "150"))
AI_HISTORY_LIMIT: int = int(os.getenv("AI_HISTORY_LIMIT", "10"))
AI_TIMEOUT: float = float(os.getenv("AI_TIMEOUT", "20"))
DEFAULT_SYSTEM_PROMPT: str = os.getenv(
    "DEFAULT_SYSTEM_PROMPT",
    "You are a helpful customer service assistant. Answer in the language the user writes in."
)

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR: str = os.getenv("LOG_DIR", str(BASE_DIR / "logs"))

# ────────────────────────────────────────────
# Database Configuration
# ────────────────────────────────────────────
DB_USER = os.getenv("DB_USER", "postgres")
DB_PASSWORD = os.getenv("DB_PASSWORD", "")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "whatsflow_db")
DATABASE_URL = os.getenv("DATABASE_URL")

# Build DATABASE_URL
if not DATABASE_URL:
    encoded_password = quote_plus(DB_PASSWORD)
    DATABASE_URL = f"postgresql://{DB_USER}:{encoded_password}@{DB_HOST}:{DB_PORT}/{DB_NAME}"

# ────────────────────────────────────────────
# JWT Configuration
# ────────────────────────────────────────────
JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "")
JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")

if not JWT_SECRET_KEY:
    import warnings
    warnings.warn("JWT_SECRET_KEY not set! Management API accepts only the X-User-Id header.")

# ────────────────────────────────────────────
# Canned replies
# ────────────────────────────────────────────
DEFAULT_REPLY: str = "I'm sorry, I didn't understand that. Please try again."
AI_ERROR_REPLY: str = "I'm sorry, I'm having trouble generating a response right now. Please try again later."
AI_UNAVAILABLE_REPLY: str = "I'm sorry, automatic replies are not available at the moment. Please try again later."
BUTTONS_FALLBACK_BODY: str = "Please choose an option:"
REPROMPT_TEMPLATE: str = "Please reply with '{expected}' to continue."
