"""
Detects changes to a resource made while it was paused.

Only user-controlled regions are compared: spec, annotations and labels.
The pause marker and the pause-state annotation are written by us and are
removed from both sides first, so our own writes never count as drift.
"""

import copy
import difflib
import json
import logging
from typing import Any, Dict, Iterable, List, Tuple

from pausekeeper.models.constants import ANNOTATION_KEY_PAUSE_STATE, ANNOTATION_KEY_RECONCILIATION_PAUSED
from pausekeeper.utils.logger import get_module_logger

logger = get_module_logger(__name__)

OWNED_ANNOTATION_KEYS: Tuple[str, ...] = (ANNOTATION_KEY_RECONCILIATION_PAUSED, ANNOTATION_KEY_PAUSE_STATE)

# Checked in order; the first differing region short-circuits.
COMPARED_FIELDS: Tuple[Tuple[str, ...], ...] = (
    ("spec",),
    ("metadata", "annotations"),
    ("metadata", "labels"),
)

_MISSING = object()


def strip_owned_annotations(
    document: Dict[str, Any],
    owned_keys: Iterable[str] = OWNED_ANNOTATION_KEYS
) -> Dict[str, Any]:
    """
    Return a deep copy of a resource document without the owned annotations.

    A map emptied by the stripping is dropped, as the API server would
    store it; a map that was already empty is kept.
    """
    stripped = copy.deepcopy(document)
    metadata = stripped.get("metadata")
    if isinstance(metadata, dict):
        annotations = metadata.get("annotations")
        if isinstance(annotations, dict):
            removed = [annotations.pop(key) for key in owned_keys if key in annotations]
            if removed and not annotations:
                del metadata["annotations"]
    return stripped


def is_updated(
    old: Dict[str, Any],
    new: Dict[str, Any],
    owned_keys: Iterable[str] = OWNED_ANNOTATION_KEYS
) -> bool:
    """
    Check whether the resource changed between two snapshots.

    Args:
        old: Snapshot taken when the resource was paused
        new: Current resource document
        owned_keys: Annotation keys to ignore

    Returns:
        True if spec, annotations or labels differ
    """
    owned_keys = tuple(owned_keys)
    old = strip_owned_annotations(old, owned_keys)
    new = strip_owned_annotations(new, owned_keys)

    for path in COMPARED_FIELDS:
        if not _field_equal(old, new, path):
            return True

    return False


def _field_equal(old: Dict[str, Any], new: Dict[str, Any], path: Tuple[str, ...]) -> bool:
    old_value = _nested_field(old, path)
    new_value = _nested_field(new, path)

    if old_value is _MISSING and new_value is _MISSING:
        return True

    if old_value is _MISSING or new_value is _MISSING or old_value != new_value:
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                f"Field {'.'.join(path)} not equal:\n{_render_diff(old_value, new_value)}"
            )
        return False

    return True


def _nested_field(document: Dict[str, Any], path: Tuple[str, ...]) -> Any:
    current: Any = document
    for key in path:
        if not isinstance(current, dict) or current.get(key) is None:
            return _MISSING
        current = current[key]
    return current


def _render_diff(old_value: Any, new_value: Any) -> str:
    def dump(value: Any) -> List[str]:
        if value is _MISSING:
            return ["<absent>"]
        return json.dumps(value, indent=2, sort_keys=True, default=str).splitlines()

    return "\n".join(difflib.unified_diff(dump(old_value), dump(new_value), "paused", "current", lineterm=""))
