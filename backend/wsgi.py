# backend/wsgi.py
# FLASK_APP entry point: python -m flask --app wsgi.py <command>
from chaintrace import create_app

app = create_app()
