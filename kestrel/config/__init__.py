"""Configuration system: validated, immutable settings objects.

Model geometry and device settings are pydantic models. They are created
once at startup and shared read-only by every component; validation runs
at construction so mistakes surface before anything touches the device.
"""
from __future__ import annotations

import enum
from typing import Annotated, TypeVar

from pydantic import AfterValidator, BaseModel, ConfigDict


T = TypeVar("T")


class ValidationType(enum.Enum):
    """Types of value validation we support."""

    SHOULD_BE_POSITIVE = "should_be_positive"
    SHOULD_BE_NON_NEGATIVE = "should_be_non_negative"


class Config(BaseModel):
    """Base class for all configuration objects.

    Configs are frozen: a model's geometry cannot change once buffers
    have been sized from it.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    @staticmethod
    def check(left: T, validation_type: ValidationType) -> T:
        """Validate a value against a constraint, raising ValueError on failure."""
        match validation_type:
            case ValidationType.SHOULD_BE_POSITIVE:
                if left <= 0:  # type: ignore[operator]
                    raise ValueError(
                        f"Validation failed: {validation_type.name}: {left!r} <= 0"
                    )
                return left
            case ValidationType.SHOULD_BE_NON_NEGATIVE:
                if left < 0:  # type: ignore[operator]
                    raise ValueError(
                        f"Validation failed: {validation_type.name}: {left!r} < 0"
                    )
                return left
            case _:
                raise ValueError(
                    f"Validation failed: unknown validation type {validation_type}"
                )


# Type aliases for validated primitives. Use these in config models.
PositiveInt = Annotated[
    int,
    AfterValidator(lambda v: Config.check(v, ValidationType.SHOULD_BE_POSITIVE)),
]
NonNegativeInt = Annotated[
    int,
    AfterValidator(lambda v: Config.check(v, ValidationType.SHOULD_BE_NON_NEGATIVE)),
]
PositiveFloat = Annotated[
    float,
    AfterValidator(lambda v: Config.check(v, ValidationType.SHOULD_BE_POSITIVE)),
]
