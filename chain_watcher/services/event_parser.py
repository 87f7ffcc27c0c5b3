"""
Event parser service for decoded contract events.
Validates decoded logs and normalizes them into values that fit the events table.
"""

from typing import Any, Dict, List, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

import structlog

from chain_watcher.core.exceptions import MalformedEventError


logger = structlog.get_logger(__name__)


def to_jsonable(value: Any) -> Any:
    """Convert web3 return values (HexBytes, AttributeDict, tuples) to JSON-safe data."""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


class DecodedEvent(BaseModel):
    """A decoded log as produced by the chain client's ``decode``."""

    model_config = ConfigDict(extra="ignore")

    address: str
    event: str = Field(min_length=1)
    signature: str = Field(min_length=1)
    args: Dict[str, Any]
    raw: Dict[str, Any]
    topics: List[str] = Field(default_factory=list)
    block_number: int = Field(ge=0)
    block_hash: str
    transaction_hash: str
    transaction_index: int = Field(ge=0)
    log_index: int = Field(ge=0)

    @field_validator("block_hash", "transaction_hash", "signature")
    @classmethod
    def normalize_hex(cls, v: str) -> str:
        return v.lower()

    @field_validator("args", "raw", mode="before")
    @classmethod
    def jsonable_payload(cls, v: Any) -> Any:
        return to_jsonable(v) if v is not None else v

    @field_validator("topics", mode="before")
    @classmethod
    def jsonable_topics(cls, v: Any) -> Any:
        return to_jsonable(v) if v is not None else []

    def to_record_fields(self) -> Dict[str, Any]:
        """Column values for a new ``Event`` row."""
        return {
            "block_number": self.block_number,
            "block_hash": self.block_hash,
            "transaction_index": self.transaction_index,
            "transaction_hash": self.transaction_hash,
            "log_index": self.log_index,
            "emitter_address": self.address,
            "event_name": self.event,
            "signature": self.signature,
            "decoded_args": self.args,
            "raw_log": self.raw,
            "topics": self.topics,
        }


def parse_decoded_event(data: Mapping[str, Any]) -> DecodedEvent:
    """
    Validate a decoded event.

    Raises:
        MalformedEventError: if required fields are missing or invalid
    """
    try:
        return DecodedEvent.model_validate(dict(data))
    except (ValidationError, TypeError, ValueError) as e:
        missing = []
        if isinstance(e, ValidationError):
            missing = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise MalformedEventError(
            "Decoded event is missing required fields",
            details={"fields": missing, "error": str(e)},
        )
