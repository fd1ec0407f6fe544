# backend/wsgi.py
from hera import create_app

app = create_app()
