"""Input limits and validators.

Every validator raises `ValidationError` with a message naming the offending
field, and returns the sanitized value (trimmed, escaped, coerced). Nothing
here touches the network; handlers run these before the first GitHub call.
"""
from __future__ import annotations

import html
import math
import re
from typing import Any, Mapping

from slayer_wiki.errors import PayloadTooLargeError, ValidationError

from .codec import json_size_bytes
from .types import DataType

BUILD_NAME_MAX = 100
USERNAME_MAX = 39
USER_ID_MAX_DIGITS = 20
ITEM_ID_MAX = 100
WEAPON_NAME_MAX = 100
GRID_TYPE_MAX = 50
DESCRIPTION_MAX = 1000
TAG_MAX = 30
MAX_TAGS = 10
ISSUE_TITLE_MAX = 256
ISSUE_BODY_MAX = 65536
MAX_LABELS = 20
LABEL_MAX = 50

MAX_SKILL_SLOTS = 50
MAX_SPIRIT_SLOTS = 10
MAX_GRID_CELLS = 500

MAX_REQUEST_BODY_BYTES = 2 * 1024 * 1024
MAX_BUILD_DATA_BYTES = 512 * 1024
MAX_SPIRIT_DATA_BYTES = 10 * 1024

ID_PATTERN = re.compile(r"[a-zA-Z0-9_-]+")
NAME_PATTERN = re.compile(r"[a-zA-Z0-9\s\-_.'()]+")
GITHUB_USERNAME_PATTERN = re.compile(r"[a-zA-Z0-9]([a-zA-Z0-9-]{0,37}[a-zA-Z0-9])?")

_SLOT_LIMITS: dict[DataType, int] = {
    DataType.SKILL_BUILDS: MAX_SKILL_SLOTS,
    DataType.BATTLE_LOADOUTS: MAX_SKILL_SLOTS,
    DataType.SPIRIT_BUILDS: MAX_SPIRIT_SLOTS,
}


def is_missing(value: Any) -> bool:
    """Falsy scalars count as missing; empty containers do not."""
    if value is None or value is False:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (int, float)):
        return value == 0
    return False


def escape_html(text: str) -> str:
    return html.escape(text, quote=True)


def validate_string_length(value: Any, min_len: int, max_len: int, field: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    trimmed = value.strip()
    if min_len > 0 and len(trimmed) < min_len:
        raise ValidationError(f"{field} must be at least {min_len} characters")
    if len(trimmed) > max_len:
        raise ValidationError(f"{field} must be no more than {max_len} characters")
    return trimmed


def validate_username(username: Any) -> str:
    value = validate_string_length(username, 1, USERNAME_MAX, "Username")
    if not GITHUB_USERNAME_PATTERN.fullmatch(value):
        raise ValidationError("Invalid GitHub username format")
    return value


def validate_user_id(user_id: Any) -> int:
    if isinstance(user_id, bool):
        raise ValidationError("User ID must be a positive number")
    if isinstance(user_id, str) and user_id.strip().isdigit():
        numeric = int(user_id.strip())
    elif isinstance(user_id, int):
        numeric = user_id
    else:
        raise ValidationError("User ID must be a positive number")
    if numeric <= 0:
        raise ValidationError("User ID must be a positive number")
    if len(str(numeric)) > USER_ID_MAX_DIGITS:
        raise ValidationError("User ID is too large")
    return numeric


def validate_item_id(value: Any, field: str = "Item ID") -> str:
    item_id = validate_string_length(value, 1, ITEM_ID_MAX, field)
    if not ID_PATTERN.fullmatch(item_id):
        raise ValidationError(f"{field} contains invalid characters")
    return item_id


def validate_build_name(name: Any) -> str:
    value = validate_string_length(name, 1, BUILD_NAME_MAX, "Build name")
    if not NAME_PATTERN.fullmatch(value):
        raise ValidationError(
            "Build name contains invalid characters. Only letters, numbers, spaces, "
            "and basic punctuation are allowed."
        )
    return value


def validate_array_length(value: Any, max_len: int, field: str) -> list[Any]:
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be an array")
    if len(value) > max_len:
        raise ValidationError(f"Too many {field.lower()} (maximum {max_len})")
    return value


def _validate_tags(tags: Any) -> list[str]:
    arr = validate_array_length(tags, MAX_TAGS, "Tags")
    return [
        escape_html(validate_string_length(tag, 1, TAG_MAX, f"Tags[{idx}]"))
        for idx, tag in enumerate(arr)
    ]


def validate_build_data(data: Any, data_type: DataType) -> dict[str, Any]:
    if not isinstance(data, Mapping):
        raise ValidationError("Build data must be an object")
    out = dict(data)

    if data_type != DataType.MY_SPIRITS and is_missing(out.get("name")):
        raise ValidationError("Build name is required")
    if not is_missing(out.get("name")):
        out["name"] = validate_build_name(out["name"])

    if not is_missing(out.get("slots")) and data_type in _SLOT_LIMITS:
        validate_array_length(out["slots"], _SLOT_LIMITS[data_type], "Slots")

    if "tags" in out and out["tags"] is not None:
        out["tags"] = _validate_tags(out["tags"])
    if "description" in out and out["description"] is not None:
        out["description"] = escape_html(
            validate_string_length(out["description"], 0, DESCRIPTION_MAX, "Description")
        )

    if data_type == DataType.MY_SPIRITS and is_missing(out.get("spiritId")):
        raise ValidationError("Spirit data must include a spiritId")
    if data_type == DataType.SKILL_BUILDS and (
        is_missing(out.get("maxSlots")) or is_missing(out.get("slots"))
    ):
        raise ValidationError("Build must have maxSlots and slots")
    if data_type == DataType.ENGRAVING_BUILDS and any(
        is_missing(out.get(f)) for f in ("weaponId", "weaponName", "gridState", "inventory")
    ):
        raise ValidationError(
            "Engraving build must have weaponId, weaponName, gridState, and inventory"
        )

    max_bytes = (
        MAX_SPIRIT_DATA_BYTES if data_type == DataType.MY_SPIRITS else MAX_BUILD_DATA_BYTES
    )
    if json_size_bytes(out) > max_bytes:
        raise ValidationError(f"Build data is too large (max {max_bytes // 1024}KB)")
    return out


def _validate_percentage(value: Any, field: str) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a valid number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a valid number") from None
    if math.isnan(number) or math.isinf(number):
        raise ValidationError(f"{field} must be a valid number")
    if number < 0.1:
        raise ValidationError(f"{field} must be at least 0.1%")
    text = repr(number)
    if "." in text and "e" not in text and len(text.split(".", 1)[1].rstrip("0")) > 2:
        raise ValidationError(f"{field} can have at most 2 decimal places")
    return number


def validate_completion_effect(effect: Any) -> dict[str, float]:
    if not isinstance(effect, Mapping):
        raise ValidationError(
            "Completion effect must be an object with atk and hp properties"
        )
    if effect.get("atk") is None:
        raise ValidationError("ATK completion effect is required")
    atk = _validate_percentage(effect["atk"], "ATK completion effect")
    if effect.get("hp") is None:
        raise ValidationError("HP completion effect is required")
    hp = _validate_percentage(effect["hp"], "HP completion effect")
    return {"atk": atk, "hp": hp}


def validate_grid_submission(data: Any) -> dict[str, Any]:
    if not isinstance(data, Mapping):
        raise ValidationError("Grid submission data must be an object")
    out = dict(data)

    for field in ("weaponId", "weaponName", "gridType", "completionEffect", "activeSlots"):
        if is_missing(out.get(field)):
            raise ValidationError(f"Grid submission missing required field: {field}")

    if isinstance(out["weaponId"], int) and not isinstance(out["weaponId"], bool):
        out["weaponId"] = str(out["weaponId"])
    out["weaponId"] = validate_item_id(out["weaponId"], "Weapon ID")
    out["weaponName"] = escape_html(
        validate_string_length(out["weaponName"], 1, WEAPON_NAME_MAX, "Weapon name")
    )
    out["gridType"] = escape_html(
        validate_string_length(out["gridType"], 1, GRID_TYPE_MAX, "Grid type")
    )
    out["completionEffect"] = validate_completion_effect(out["completionEffect"])

    if not isinstance(out["activeSlots"], list):
        raise ValidationError("Active slots must be an array")
    if len(out["activeSlots"]) > MAX_GRID_CELLS:
        raise ValidationError(f"Too many grid cells (max {MAX_GRID_CELLS})")
    return out


def validate_issue_title(title: Any) -> str:
    return validate_string_length(title, 1, ISSUE_TITLE_MAX, "Issue title")


def validate_issue_body(body: Any, field: str = "Body") -> str:
    if not isinstance(body, str):
        raise ValidationError(f"{field} must be a string")
    if len(body) > ISSUE_BODY_MAX:
        raise ValidationError(f"{field} must be no more than {ISSUE_BODY_MAX} characters")
    return body


def validate_labels(labels: Any) -> list[str]:
    if not isinstance(labels, list):
        labels = [labels]
    if len(labels) > MAX_LABELS:
        raise ValidationError(f"Too many labels (maximum {MAX_LABELS})")
    return [validate_string_length(label, 1, LABEL_MAX, "Label") for label in labels]


def validate_request_body_size(raw: bytes | str) -> None:
    size = len(raw.encode("utf-8")) if isinstance(raw, str) else len(raw)
    if size > MAX_REQUEST_BODY_BYTES:
        raise PayloadTooLargeError(
            f"Request body is too large (max {MAX_REQUEST_BODY_BYTES // 1024 // 1024}MB)"
        )
