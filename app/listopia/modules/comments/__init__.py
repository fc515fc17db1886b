"""
Comments on lists and list items, with @email mentions.
"""
