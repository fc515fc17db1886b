"""
Lists module.

Lists with nested sub-lists, list items (tasks, notes, links, ...), board columns
and time entries. Public lists are readable through their public slug.
"""
