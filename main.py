# main.py
"""
Entry point for Google Cloud Functions v2.
Imports and exports the handle_request function from src/main.py.
"""

# Scheduled send-queue trigger
from src.main import handle_request
