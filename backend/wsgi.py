# backend/wsgi.py
from maltiti import create_app

app = create_app()
