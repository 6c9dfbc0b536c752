"""Jotter — personal notes backend.

Thin REST service for notes, with session tokens, passkey login and a
sandbox demo mode for trying the app without an account.
"""

__version__ = "1.0.0"
