"""Request bodies and realtime envelopes.

Python code stays snake_case; JSON on the wire is camelCase.
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
    }


class CreateSessionRequest(CamelModel):
    password: str = ""
    sender_name: str = "Anonymous"


class VerifyPasswordRequest(CamelModel):
    password: Optional[str] = None


class SignalType(str, Enum):
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    FILE_METADATA = "file-metadata"


class SignalEnvelope(CamelModel):
    """Client-to-server signaling message. Extra fields are relayed untouched."""

    model_config = {"extra": "allow"}

    type: SignalType
    target_id: Optional[str] = None
