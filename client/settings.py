"""
Environment configuration for the terminal client.

Library modules take explicit arguments; only the entry point reads these.
"""

import os

from dotenv import load_dotenv

load_dotenv()

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash-lite")
DM_LANGUAGE = os.getenv("DM_LANGUAGE", "English")

MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
MONGODB_DB = os.getenv("MONGODB_DB", "aetheria")

MESSAGE_HISTORY_LIMIT = int(os.getenv("MESSAGE_HISTORY_LIMIT", "100"))
SUMMARY_EVERY_TURNS = int(os.getenv("SUMMARY_EVERY_TURNS", "5"))

ITEM_CATALOG_PATH = os.getenv("ITEM_CATALOG_PATH")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "logs/aetheria.log")
