"""Base model configuration for all Pydantic models."""

import base64
import binascii
from typing import Annotated, Any

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    PlainSerializer,
    ValidationInfo,
)


class ClusterKitBaseModel(BaseModel):
    """Base model with common configuration.

    Conventions:
    - All timestamps are ISO 8601 format with timezone (UTC preferred)
    - Binary material is standard base64 text in JSON
    - Field names are lowercase snake_case, wire names are aliases
    """

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        use_enum_values=True,
    )


def _decode_base64(value: Any, info: ValidationInfo) -> Any:
    if info.mode == "json" and isinstance(value, str):
        try:
            return base64.b64decode(value, validate=True)
        except binascii.Error as e:
            raise ValueError(f"Invalid base64 data: {e}") from e
    return value


def _encode_base64(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


# Raw bytes in Python, standard base64 text in JSON.
Base64Data = Annotated[
    bytes,
    BeforeValidator(_decode_base64),
    PlainSerializer(_encode_base64, return_type=str, when_used="json-unless-none"),
]
