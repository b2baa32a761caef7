"""
CareLink - Configuration
Environment variables and settings
"""
import os
from pathlib import Path
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

load_dotenv(BASE_DIR / ".env")

# Database
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./carelink.db")

# Bearer tokens issued by the identity provider
SIGN_KEY = os.environ.get("CARELINK_SIGN_KEY", "dev-secret-key")
JWT_ALG = os.getenv("JWT_ALG", "HS256")

# OTP challenges
OTP_TTL_MINUTES = int(os.getenv("OTP_TTL_MINUTES", "10"))
OTP_MAX_PER_WINDOW = int(os.getenv("OTP_MAX_PER_WINDOW", "3"))
OTP_WINDOW_MINUTES = int(os.getenv("OTP_WINDOW_MINUTES", "60"))

# Doctor access grants
EXPIRING_SOON_HOURS = int(os.getenv("EXPIRING_SOON_HOURS", "2"))
MAX_GRANT_HOURS = int(os.getenv("MAX_GRANT_HOURS", "720"))

# Email delivery (Resend)
RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
RESEND_API_URL = os.getenv("RESEND_API_URL", "https://api.resend.com/emails")
EMAIL_FROM = os.getenv("EMAIL_FROM", "CareBag <onboarding@resend.dev>")
NOTIFY_TIMEOUT_SECONDS = float(os.getenv("NOTIFY_TIMEOUT_SECONDS", "10"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "")
