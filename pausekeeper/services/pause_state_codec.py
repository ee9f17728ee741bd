"""
Encoding and decoding of the pause-state annotation.
"""

from typing import Optional

from pydantic import ValidationError

from pausekeeper.exceptions import MalformedStateError
from pausekeeper.models.constants import ANNOTATION_KEY_PAUSE_STATE
from pausekeeper.models.pause_state import PauseState
from pausekeeper.models.resource import ManagedResource


def decode_pause_state(
    resource: ManagedResource,
    annotation_key: str = ANNOTATION_KEY_PAUSE_STATE
) -> Optional[PauseState]:
    """
    Read the pause state stored on a resource.
    
    Args:
        resource: Resource carrying the annotation
        annotation_key: Annotation holding the encoded state
        
    Returns:
        The decoded state, or None if the resource was never paused by us
        
    Raises:
        MalformedStateError: If the annotation exists but is not a valid state
    """
    raw = resource.get_annotation(annotation_key)
    if raw is None:
        return None
    
    try:
        return PauseState.model_validate_json(raw)
    except ValidationError as e:
        raise MalformedStateError(
            f"Annotation {annotation_key} does not hold a valid pause state: {e.error_count()} error(s)",
            raw_value=raw,
            context={"annotation_key": annotation_key, "errors": e.errors(include_url=False, include_context=False)}
        ) from e


def encode_pause_state(state: PauseState) -> str:
    """Serialize a pause state to the annotation string, omitting absent fields."""
    return state.model_dump_json(by_alias=True, exclude_none=True)
