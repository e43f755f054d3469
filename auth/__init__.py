"""auth/ -- Credential and session lifecycle package for Larek.

Layer rule: auth/ imports only stdlib + third-party libraries, plus
core.config where a module needs Settings. It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
