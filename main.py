#!/usr/bin/env python3
"""
sessiongate -- session-based identity service and the gateway in front of it.

Usage:
  python main.py auth                      # auth service on 127.0.0.1:3060
  python main.py gateway                   # gateway on 127.0.0.1:8000
  python main.py gateway --host 0.0.0.0 --port 8080
  python main.py auth --reload             # restart on source changes

Environment variables (or .env):
  SECRET_KEY        Required unless DEBUG=true. At least 32 characters.
  DATABASE_URL      SQLAlchemy URL for the credential store.
  RESEND_API_KEY    Enables email delivery; without it codes are only logged.
  AUTH_SERVICE_URL, BACKEND_SERVICE_URL, FRONTEND_URL, GATEWAY_URL
                    Topology seen by the gateway and the OAuth callbacks.
"""

import argparse

import uvicorn

# App name -> (ASGI import string, default port)
_APPS = {
    "auth": ("asgi:auth_app", 3060),
    "gateway": ("asgi:gateway_app", 8000),
}


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run the sessiongate auth service or gateway.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("app", choices=sorted(_APPS), help="Which service to run")
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=None, help="Port to bind (default: auth 3060, gateway 8000)")
    parser.add_argument("--reload", action="store_true", help="Restart the server when source files change")
    args = parser.parse_args()

    target, default_port = _APPS[args.app]
    uvicorn.run(target, host=args.host, port=args.port or default_port, reload=args.reload)


if __name__ == "__main__":
    main()
