"""
Collaboration module.

Collaborators (read/write access to a list or a single item) and token-based
invitations for people who do not have an account yet.
"""
