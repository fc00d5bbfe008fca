# wsgi.py
# gunicorn "wsgi:app"
from __future__ import annotations

import os

os.environ.setdefault("APP_ENV", "production")

from alianah import create_app  # noqa: E402

app = create_app()
