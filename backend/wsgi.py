# backend/wsgi.py
from stallpos import create_app

app = create_app()
