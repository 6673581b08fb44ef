"""
PatentVault settings.
Values come from the environment (a local .env file is loaded first).
"""
import os

from dotenv import load_dotenv

load_dotenv()

# Gemini API
GEMINI_API_KEY = os.environ.get("API_KEY") or os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY") or ""
GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-3-flash-preview")
GEMINI_API_BASE = os.environ.get("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta")
GEMINI_TIMEOUT = float(os.environ.get("GEMINI_TIMEOUT", "60"))

# Reminders
ANNUITY_ALERT_DAYS = int(os.environ.get("ANNUITY_ALERT_DAYS", "90"))
MAIL_SENDER = os.environ.get("MAIL_SENDER", "PatentVault System <no-reply@patentvault.com>")

# Application Settings
APP_TITLE = "PatentVault"
APP_VERSION = "v20260106"
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
