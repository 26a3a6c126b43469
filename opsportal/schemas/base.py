"""
Base Schema Classes for Pydantic Models

RULE: All response schemas that read from ORM models or domain objects
inherit from BaseResponseSchema.
"""

from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base class for response schemas.

    Enables from_attributes for ORM compatibility and allows population by
    field name or alias.
    """
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """
    Base class for create/input schemas.

    Unknown fields are ignored (forward compatibility with older clients).
    """
    model_config = ConfigDict(
        extra='ignore',
    )


class BaseUpdateSchema(BaseModel):
    """
    Base class for update/patch schemas.

    All fields are optional; only the fields a client actually sent
    (``model_fields_set``) are applied.
    """
    model_config = ConfigDict(
        extra='ignore',
    )
