"""
Editable Field Registry

The closed set of fields that contributions may change, per entity type.
Each field has a parser (wire value -> typed value) and the model attribute
it writes to. Anything not listed here is rejected at intake, long before a
mutation is attempted.

Whole-record rules (ATK/DEF range, set-code pattern, ...) live here too so
that proposals, drafts, claims and admin edits all validate the same way.
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from ..schemas import Alias, Card, DiffEntity, Print, TargetType
from .errors import ValidationError


SET_CODE_PATTERN = re.compile(r"^[A-Z0-9]{2,8}-[A-Z0-9]{2,6}$", re.IGNORECASE)

STAT_RANGE = (0, 9999)
LEVEL_RANGE = (0, 13)
MIN_NAME_LENGTH = 2


def _parse_str(value: Any) -> str:
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValidationError(f"Expected text, got {type(value).__name__}")
    return str(value).strip()


def _parse_optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    parsed = _parse_str(value)
    return parsed or None


def _parse_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError("Expected an integer, got a boolean")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and re.fullmatch(r"\s*-?\d+\s*", value):
        return int(value)
    raise ValidationError(f"Expected an integer, got {value!r}")


@dataclass(frozen=True)
class FieldSpec:
    """One editable field: wire key, model attribute and parser."""
    entity: DiffEntity
    key: str
    attr: str
    parse: Callable[[Any], Any]

    @property
    def path(self) -> str:
        return f"{_PATH_PREFIX[self.entity]}.{self.key}"

    def set(self, record, value: Any):
        """Return a copy of `record` with this field set to the parsed value."""
        return record.model_copy(update={self.attr: self.parse(value)})


_PATH_PREFIX = {
    DiffEntity.CARD: "cards",
    DiffEntity.PRINT: "prints",
    DiffEntity.ALIAS: "aliases",
}

_SPECS = [
    FieldSpec(DiffEntity.CARD, "name", "name", _parse_str),
    FieldSpec(DiffEntity.CARD, "type", "type", _parse_str),
    FieldSpec(DiffEntity.CARD, "attribute", "attribute", _parse_optional_str),
    FieldSpec(DiffEntity.CARD, "level_rank_link", "level_rank_link", _parse_int),
    FieldSpec(DiffEntity.CARD, "atk", "atk", _parse_int),
    FieldSpec(DiffEntity.CARD, "def", "def_", _parse_int),
    FieldSpec(DiffEntity.CARD, "text", "text", _parse_str),
    FieldSpec(DiffEntity.CARD, "archetype", "archetype", _parse_optional_str),
    FieldSpec(DiffEntity.PRINT, "card_id", "card_id", _parse_str),
    FieldSpec(DiffEntity.PRINT, "set_code", "set_code", _parse_str),
    FieldSpec(DiffEntity.PRINT, "set_name", "set_name", _parse_str),
    FieldSpec(DiffEntity.PRINT, "rarity", "rarity", _parse_optional_str),
    FieldSpec(DiffEntity.PRINT, "edition", "edition", _parse_optional_str),
    FieldSpec(DiffEntity.PRINT, "language", "language", _parse_str),
    FieldSpec(DiffEntity.PRINT, "release_date", "release_date", _parse_optional_str),
    FieldSpec(DiffEntity.ALIAS, "card_id", "card_id", _parse_str),
    FieldSpec(DiffEntity.ALIAS, "alias_text", "alias_text", _parse_str),
    FieldSpec(DiffEntity.ALIAS, "locale", "locale", _parse_str),
]

FIELDS: dict[DiffEntity, dict[str, FieldSpec]] = {}
for _spec in _SPECS:
    FIELDS.setdefault(_spec.entity, {})[_spec.key] = _spec

# Observations may only target card/print fields; card_id links are not crowd-sourced
OBSERVABLE_PATHS: dict[str, FieldSpec] = {
    spec.path: spec
    for spec in _SPECS
    if spec.entity in (DiffEntity.CARD, DiffEntity.PRINT) and spec.key != "card_id"
}

_TARGET_ENTITY = {
    TargetType.CARD: DiffEntity.CARD,
    TargetType.PRINT: DiffEntity.PRINT,
}


def field_for_key(entity: DiffEntity, key: str) -> FieldSpec:
    """Look up an editable field by wire key."""
    spec = FIELDS.get(entity, {}).get(key)
    if spec is None:
        raise ValidationError(f"Field '{key}' is not editable on {entity.value} records")
    return spec


def field_for_path(target_type: TargetType, field_path: str) -> FieldSpec:
    """Look up an observable field by path such as 'cards.name'."""
    spec = OBSERVABLE_PATHS.get(field_path)
    if spec is None or spec.entity != _TARGET_ENTITY[target_type]:
        raise ValidationError(
            f"Unknown field path '{field_path}' for {target_type.value} targets"
        )
    return spec


def parse_values(entity: DiffEntity, values: dict[str, Any]) -> dict[str, Any]:
    """Parse a wire-keyed mapping into model attributes, rejecting unknown keys."""
    return {
        field_for_key(entity, key).attr: field_for_key(entity, key).parse(value)
        for key, value in values.items()
    }


def apply_values(record, entity: DiffEntity, values: dict[str, Any]):
    """Return a copy of `record` with every wire-keyed value applied."""
    return record.model_copy(update=parse_values(entity, values))


# ============================================================
# RECORD VALIDATION
# ============================================================

def is_valid_set_code(set_code: str) -> bool:
    return bool(SET_CODE_PATTERN.match(set_code or ""))


def _check_range(errors: list[str], label: str, value: Optional[int], bounds: tuple[int, int]) -> None:
    low, high = bounds
    if value is not None and not low <= value <= high:
        errors.append(f"{label} must be {low}..{high}")


def card_errors(card: Card) -> list[str]:
    errors: list[str] = []
    if not card.name.strip():
        errors.append("Card name is required")
    elif len(card.name.strip()) < MIN_NAME_LENGTH:
        errors.append("Card name is too short")
    if not card.type.strip():
        errors.append("Card type is required")
    _check_range(errors, "ATK", card.atk, STAT_RANGE)
    _check_range(errors, "DEF", card.def_, STAT_RANGE)
    _check_range(errors, "Level/Rank/Link", card.level_rank_link, LEVEL_RANGE)
    return errors


def print_errors(print_: Print) -> list[str]:
    errors: list[str] = []
    if not is_valid_set_code(print_.set_code):
        errors.append(f"Invalid set code '{print_.set_code}' (expected ABC-123 style)")
    if not print_.card_id:
        errors.append("Print must reference a card")
    return errors


def alias_errors(alias: Alias) -> list[str]:
    errors: list[str] = []
    if len(alias.alias_text.strip()) < MIN_NAME_LENGTH:
        errors.append("Alias text is too short")
    return errors


def validate_record(record: Union[Card, Print, Alias]) -> None:
    """Raise ValidationError listing every rule the record breaks."""
    if isinstance(record, Card):
        errors = card_errors(record)
    elif isinstance(record, Print):
        errors = print_errors(record)
    else:
        errors = alias_errors(record)
    if errors:
        raise ValidationError("; ".join(errors))
