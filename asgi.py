"""
asgi.py -- Application assembly for proID.

Joins the JSON API with the static file mount for uploaded attachments.
api/main.py knows nothing about where files are served from; vault/files.py
only produces the "/uploads/<name>" paths this mount resolves.

Run with:  uvicorn asgi:app --reload
"""

from fastapi.staticfiles import StaticFiles

from api.main import app, settings
from vault.files import URL_PREFIX

# check_dir=False: the lifespan creates UPLOAD_DIR on startup, after import.
app.mount(URL_PREFIX, StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")
