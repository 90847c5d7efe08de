"""
asgi.py -- Application assembly for sessiongate.

This is the ONLY file that imports both api/ and gateway/. The two apps run
as separate processes and never import each other; they only meet here so a
single module can name both ASGI targets.

Run with:  uvicorn asgi:auth_app --port 3060
           uvicorn asgi:gateway_app --port 8000
           python main.py auth|gateway
"""

from api.main import app as auth_app
from gateway.main import app as gateway_app

__all__ = ["auth_app", "gateway_app"]
