"""gateway/ -- Edge router in front of the auth service and the application backend.

Layer rule: gateway/ imports from core/ and third-party libraries only.
It never imports auth/ or api/; the auth service is reached over HTTP like
any other upstream.
"""
