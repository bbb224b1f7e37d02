"""
API key rotation state.

One row per logical provider. Persisting the position in the key list means a
restart continues spreading load where the previous run stopped instead of
hammering the first key again.
"""

from sqlalchemy import BigInteger
from sqlmodel import Field, SQLModel


class ApiRotationState(SQLModel, table=True):
    """Persisted round-robin position for a provider's key list."""

    __tablename__ = "api_rotation"

    provider: str = Field(primary_key=True)  # e.g. "fal", "wavespeed"
    current_index: int = Field(default=0)
    current_count: int = Field(default=0)
    updated_at: int = Field(sa_type=BigInteger)
