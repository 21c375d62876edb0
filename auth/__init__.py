"""auth/ -- Credentials, bearer tokens, and user identities for Campus RBAC.

Layer rule: auth/ imports only stdlib + third-party libraries + core/.
It does NOT import from api/ or rbac/.
api/ and rbac/ import from auth/, not the other way around.
"""
