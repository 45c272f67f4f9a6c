from datetime import datetime, timezone
from typing import Optional

from sqlmodel import SQLModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Entity(SQLModel):
    """
    Base class for repository entities.

    Declares the audit timestamps the repository stamps. Subclasses declare
    their own ``id`` field and pass ``table=True`` to become mapped tables:

        class Company(Entity, table=True):
            id: Optional[int] = Field(default=None, primary_key=True)
            name: str
    """

    created_at: Optional[datetime] = Field(default=None)
    updated_at: Optional[datetime] = Field(default=None)
    deleted_at: Optional[datetime] = Field(default=None, index=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


__all__ = ["Entity", "utc_now"]
