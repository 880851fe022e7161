"""auth/ -- Authentication, lockout, session and token package for Gatehouse.

Layer rule: auth/ imports stdlib, third-party libraries and core/ (config,
clock). It does NOT import from api/. auth/service.py is the only module
that reaches into analytics/ and notify/, and it receives their objects by
injection. api/ imports from auth/, not the other way around.
"""
