"""
Keyword search over lists, items and comments the user can read.
"""
