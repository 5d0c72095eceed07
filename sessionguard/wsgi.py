"""
wsgi.py — Entry point for `flask --app sessionguard.wsgi run` and WSGI servers.
"""

import os

from sessionguard.app import create_app

app = create_app(os.getenv("FLASK_ENV", "development"))
