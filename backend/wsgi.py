# backend/wsgi.py
from sahacrm import create_app

app = create_app()
