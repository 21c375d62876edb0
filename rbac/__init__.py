"""rbac/ -- Permission and role catalogs, bootstrap reconciliation, and the authorization gate.

Layer rule: rbac/ may import from auth/ and core/. It does NOT import from api/.
api/ imports from rbac/, not the other way around.
"""
