"""
Feature modules live under this package.

Each module owns its models, policies, service functions and JSON routes, and
reuses the platform primitives (auth, RBAC, audit, DB session) from app.listopia.
"""
