"""Warden — authentication core for multi-tenant applications.

Issues, verifies, rotates and revokes credentials: short-lived access
tokens, single-session refresh tokens, emailed two-factor codes and
a password-reset flow.
"""

__version__ = "0.1.0"
