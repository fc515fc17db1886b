"""
Organizations module.

Organizations, their members (owner/admin/member roles), and teams inside an
organization. Lists and chats can be scoped to an organization.
"""
