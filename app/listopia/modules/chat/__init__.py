"""
Chat assistant module.

Conversations with an LLM-backed assistant, slash commands, prompt-injection
screening, message feedback and chat export.
"""
