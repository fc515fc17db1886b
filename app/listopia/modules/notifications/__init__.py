"""
In-app notifications and per-user notification settings.
"""
