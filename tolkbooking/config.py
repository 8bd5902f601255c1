import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./tolkbooking.db")

# Calendar settings - all booking timestamps are naive local times in this zone
TIMEZONE = os.getenv("TIMEZONE", "Europe/Stockholm")

# Quiet hours: pushes to users who opted out of night notifications are
# deferred while the local hour is >= NIGHT_START_HOUR or < NIGHT_END_HOUR
NIGHT_START_HOUR = int(os.getenv("NIGHT_START_HOUR", "22"))
NIGHT_END_HOUR = int(os.getenv("NIGHT_END_HOUR", "7"))

# Immediate bookings are due this many minutes after creation
IMMEDIATE_LEAD_MINUTES = int(os.getenv("IMMEDIATE_LEAD_MINUTES", "5"))

# Customer withdrawals at least this many hours before due are "withdrawbefore24";
# translators may only hand a job back further out than this
WITHDRAW_NOTICE_HOURS = int(os.getenv("WITHDRAW_NOTICE_HOURS", "24"))

# Town filter: physical-only jobs are only offered to translators in the job's town.
# Set to "false" to offer physical jobs regardless of town.
PHYSICAL_TOWN_FILTER_ENABLED = os.getenv("PHYSICAL_TOWN_FILTER_ENABLED", "true").lower() == "true"

# OneSignal push configuration
ONESIGNAL_APP_ID = os.getenv("ONESIGNAL_APP_ID")
ONESIGNAL_API_KEY = os.getenv("ONESIGNAL_API_KEY")
ONESIGNAL_API_URL = os.getenv("ONESIGNAL_API_URL", "https://onesignal.com/api/v1/notifications")
PUSH_TITLE = os.getenv("PUSH_TITLE", "DigitalTolk")

# Twilio SMS configuration
TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN")
SMS_NUMBER = os.getenv("SMS_NUMBER")

# Resend email configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "DigitalTolk <noreply@digitaltolk.se>")

# Bounded timeout for every outbound gateway call (seconds)
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10"))

# Default locale for notification texts ("en" is the fallback)
DEFAULT_LOCALE = os.getenv("DEFAULT_LOCALE", "sv")
