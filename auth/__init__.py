"""auth/ -- Authentication package for AccountDesk.

Wraps the hosted identity provider (auth/backend.py), mirrors application
profile rows (auth/store.py) and exposes the request-side guards used by
api/ and web/.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, web/ or admin/.
api/ and web/ import from auth/, not the other way around.
"""
