"""Environment-driven settings for the TraderMade clients.

Values are read once at import time. A `.env` file in the project root is
loaded first so local credentials do not need to be exported by hand.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file from project root
project_root = Path(__file__).parent.parent.parent
env_file = project_root / ".env"
if env_file.exists():
    load_dotenv(env_file)

API_KEY = os.getenv("TRADERMADE_API_KEY")

BASE_URL = os.getenv("TRADERMADE_BASE_URL", "https://marketdata.tradermade.com/api/v1")
HTTP_TIMEOUT = float(os.getenv("TRADERMADE_HTTP_TIMEOUT", "10"))

WS_URL = os.getenv("TRADERMADE_WS_URL", "wss://marketdata.tradermade.com/feedadv")
WS_MAX_RETRIES = int(os.getenv("TRADERMADE_WS_MAX_RETRIES", "5"))
WS_RETRY_INTERVAL = float(os.getenv("TRADERMADE_WS_RETRY_INTERVAL", "5"))
# "utc" or "local"
WS_TIMESTAMP_TZ = os.getenv("TRADERMADE_WS_TIMESTAMP_TZ", "utc").lower()
