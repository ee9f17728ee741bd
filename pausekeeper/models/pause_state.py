"""
Models for the persisted pause state.

PauseState is stored as JSON in an annotation on the managed resource
itself, next to the pause marker annotation.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from pausekeeper.utils.timestamp import ensure_utc


class PauseState(BaseModel):
    """
    Persisted pause decision for one resource.

    Encoded with camelCase keys. Decoding also accepts the keys written by
    earlier releases (pause, object, lastUnPauseTime, shouldUnpauseTime)
    so resources they paused are picked up unchanged.
    """

    model_config = ConfigDict(populate_by_name=True)

    paused: bool = Field(
        default=False,
        validation_alias=AliasChoices("paused", "pause"),
        serialization_alias="paused",
        description="Whether this system currently holds the resource paused"
    )

    snapshot: Optional[Dict[str, Any]] = Field(
        default=None,
        validation_alias=AliasChoices("snapshot", "object"),
        serialization_alias="snapshot",
        description="Copy of the resource taken when it was paused, without the owned annotations"
    )

    last_pause_time: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("lastPauseTime", "last_pause_time"),
        serialization_alias="lastPauseTime",
    )

    last_unpause_time: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("lastUnpauseTime", "lastUnPauseTime", "last_unpause_time"),
        serialization_alias="lastUnpauseTime",
    )

    scheduled_unpause_time: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("scheduledUnpauseTime", "shouldUnpauseTime", "scheduled_unpause_time"),
        serialization_alias="scheduledUnpauseTime",
        description="Jittered time at which the poll interval forces an unpause"
    )

    @field_validator('last_pause_time', 'last_unpause_time', 'scheduled_unpause_time', mode='after')
    @classmethod
    def normalize_to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Store every timestamp as aware UTC."""
        return ensure_utc(v) if v is not None else v

    @model_validator(mode='after')
    def validate_pause_invariants(self) -> 'PauseState':
        """A paused state owns a snapshot and a pause time; an unpaused one has no snapshot."""
        if self.paused:
            if self.snapshot is None:
                raise ValueError("paused state must carry a snapshot")
            if self.last_pause_time is None:
                raise ValueError("paused state must carry lastPauseTime")
        elif self.snapshot is not None:
            raise ValueError("unpaused state must not carry a snapshot")
        return self
