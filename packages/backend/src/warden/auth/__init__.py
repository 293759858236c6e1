"""Authentication primitives.

Learn: The building blocks under the auth services:
- password.py     → bcrypt hashing and verification
- jwt.py          → TokenCodec: access/refresh JWTs with separate keys
- dependencies.py → FastAPI Depends() for the current identity and
                    role/permission checks
"""
