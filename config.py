import logging
import os

from dotenv import load_dotenv

load_dotenv()

DB_FILE = os.getenv("PHARMACY_DB_FILE", "pharmacies.db")

# Shared secret for the admin endpoints
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")

# Daily current-week refresh (server local time)
REFRESH_HOUR = int(os.getenv("REFRESH_HOUR", "7"))
REFRESH_MINUTE = int(os.getenv("REFRESH_MINUTE", "0"))

# Queries this short or shorter return nothing
MIN_SEARCH_LENGTH = 3

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=LOG_LEVEL, format="%(asctime)s - %(levelname)s - %(message)s"
)
