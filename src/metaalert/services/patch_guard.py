from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import jsonpatch
from jsonpointer import JsonPointerException

from src.metaalert.services.constants import GUID_FIELD, SOURCE_TYPE_FIELD
from src.metaalert.services.errors import InvalidArgumentError
from src.metaalert.services.store import Document, MetaAlertStore

PROTECTED_PATH_MESSAGE = (
    "Meta alert patches are not allowed for /alert or /status paths.  "
    "Please use the add/remove alert or update status functions instead."
)
IDENTITY_PATH_MESSAGE = "Meta alert patches are not allowed for /guid or /sourceType paths."

_IDENTITY_PATHS = ("/" + GUID_FIELD, "/" + SOURCE_TYPE_FIELD)


def _is_protected(path: Optional[str]) -> bool:
    if not path:
        return False
    return path.startswith("/alert") or path == "/status"


def _is_identity(path: Optional[str]) -> bool:
    return bool(path) and path in _IDENTITY_PATHS


# PUBLIC_INTERFACE
def validate_meta_alert_patch(operations: Sequence[Dict[str, Any]]) -> None:
    """Reject the whole batch if any operation touches the member list, the status or the identity fields."""
    for op in operations:
        if _is_protected(op.get("path")) or _is_protected(op.get("from")):
            raise InvalidArgumentError(PROTECTED_PATH_MESSAGE)
        # Members' backlinks point at the stored guid; copying it elsewhere is fine.
        if _is_identity(op.get("path")) or (op.get("op") == "move" and _is_identity(op.get("from"))):
            raise InvalidArgumentError(IDENTITY_PATH_MESSAGE)


# PUBLIC_INTERFACE
def apply_patch(document: Dict[str, Any], operations: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    """Apply RFC 6902 operations to a copy of `document`."""
    try:
        return jsonpatch.apply_patch(document, list(operations), in_place=False)
    except (jsonpatch.JsonPatchException, JsonPointerException) as e:
        raise InvalidArgumentError(f"Invalid patch: {e}")


# PUBLIC_INTERFACE
def patch_meta_alert(
    store: MetaAlertStore,
    guid: str,
    operations: List[Dict[str, Any]],
    timestamp: Optional[int] = None,
) -> Document:
    """
    Validate and apply a patch to a meta alert, then persist it.

    Validation covers every operation before anything is applied. Stats are not
    recomputed; a permitted patch never touches membership.
    """
    validate_meta_alert_patch(operations)
    meta = store.require_meta_alert(guid)
    patched = apply_patch(meta.document, operations)
    return store.persist_meta_alert(patched, timestamp, guid=guid)
