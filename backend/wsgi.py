# backend/wsgi.py
from rxstock import create_app

app = create_app()
