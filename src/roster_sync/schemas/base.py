"""Base schema classes for source payloads and ORM reads."""

from typing import Any, Self

from pydantic import BaseModel, ConfigDict


class SchemaBase(BaseModel):
    """Base class for read schemas built from SQLAlchemy rows."""

    model_config = ConfigDict(
        from_attributes=True,
        str_strip_whitespace=True,
    )

    @classmethod
    def from_orm_list(cls, objs: list[Any]) -> list[Self]:
        """
        Create schema instances from a list of SQLAlchemy models.

        Args:
            objs: List of SQLAlchemy model instances

        Returns:
            List of Pydantic schema instances
        """
        return [cls.model_validate(obj) for obj in objs]


class CleverModel(BaseModel):
    """Base class for Clever API payloads.

    Unknown fields are ignored so new upstream attributes never break
    parsing.
    """

    model_config = ConfigDict(
        extra="ignore",
        str_strip_whitespace=True,
        populate_by_name=True,
    )
