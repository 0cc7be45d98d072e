"""Identifier helpers."""
import uuid


def new_id() -> str:
    """Return a fresh opaque row id."""
    return str(uuid.uuid4())
