"""
Runtime settings.
Read once from the environment (and an optional .env next to this file).
"""

import os

from dotenv import load_dotenv

load_dotenv(os.path.join(os.path.dirname(__file__), ".env"))

# Production runs the serverless Chromium build; everything else uses
# Playwright's bundled browser.
APP_ENV = os.getenv("APP_ENV", "development")
IS_PRODUCTION = APP_ENV == "production" or os.getenv("VERCEL") == "1"
CHROMIUM_EXECUTABLE_PATH = os.getenv("CHROMIUM_EXECUTABLE_PATH", "")

HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "15"))
BROWSER_SETTLE_DELAY = float(os.getenv("BROWSER_SETTLE_DELAY", "2.0"))

ANILIST_URL = os.getenv("ANILIST_URL", "https://graphql.anilist.co")
ANILIST_MIN_INTERVAL = float(os.getenv("ANILIST_MIN_INTERVAL", "0.5"))
ANILIST_RETRY_DELAY = float(os.getenv("ANILIST_RETRY_DELAY", "60"))

WARM_CACHE_ON_STARTUP = os.getenv("WARM_CACHE_ON_STARTUP", "1") == "1"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3001"))

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36"
)
