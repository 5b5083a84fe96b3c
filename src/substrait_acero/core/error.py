"""substrait-acero error hierarchy."""

from __future__ import annotations

from typing import Optional, Type


class SubstraitAceroError(Exception):
    """Base exception for all substrait-acero errors."""

    pass


class SerdeError(SubstraitAceroError):
    """Base exception for plan conversion errors.

    Carries the wire path being processed when the error occurred
    (for example ``relations[0].rel.join.expression``) and, optionally, the
    message or native type that could not be converted.
    """

    def __init__(
        self,
        message: str,
        object_type: Optional[Type] = None,
        field_path: Optional[str] = None,
    ):
        """Initialize a SerdeError.

        Args:
            message: The error message.
            object_type: Optional type information for the error.
            field_path: Optional field path where the error occurred.
        """
        self.message = message
        self.object_type = object_type
        self.field_path = field_path
        if object_type and field_path:
            super().__init__(f"{message} at {field_path} in {object_type.__name__}")
        elif field_path:
            super().__init__(f"{message} at {field_path}")
        else:
            super().__init__(message)


class InvalidPlanError(SerdeError):
    """The input is malformed or violates a constraint of the format."""

    pass


class UnsupportedFeatureError(SerdeError):
    """The input is well-formed but uses a feature with no native counterpart."""

    pass
