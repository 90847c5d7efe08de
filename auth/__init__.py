"""auth/ -- Identity core for sessiongate: credentials, verification codes, sessions.

Layer rule: auth/ imports from core/ and third-party libraries only.
It does NOT import from api/ or gateway/.
api/ imports from auth/, not the other way around. gateway/ never imports
auth/; it talks to the auth service over HTTP.
"""
