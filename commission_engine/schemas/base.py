"""
Base Schema Classes for Pydantic Models

RULE: Input schemas inherit from BaseCreateSchema or BaseUpdateSchema.
"""

from pydantic import BaseModel, ConfigDict


class BaseCreateSchema(BaseModel):
    """
    Base class for create/input schemas.
    """
    model_config = ConfigDict(
        # Allow extra fields to be ignored (forward compatibility)
        extra='ignore',
    )


class BaseUpdateSchema(BaseModel):
    """
    Base class for update/patch schemas.

    All fields are optional by default for partial updates.
    """
    model_config = ConfigDict(
        extra='ignore',
    )
