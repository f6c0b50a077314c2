"""
Services Layer

Tournament stage engine services that:
- Accept domain inputs (IDs, sessions, stage keys)
- Return domain outputs (models, dicts, result dataclasses)
- Do NOT depend on HTTP request/response objects
- Raise poolplay.errors exceptions; routes map them to HTTP responses
"""
