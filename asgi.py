"""
asgi.py -- Application assembly for AuthKit.

The only place outside main.py that reads configuration: it resolves the
Settings singleton once and hands it to the application factory.

Run with:  uvicorn asgi:app --reload
           python main.py
"""

from api.main import create_app
from core.config import get_settings

app = create_app(get_settings())
