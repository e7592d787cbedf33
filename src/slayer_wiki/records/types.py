from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from slayer_wiki.errors import ValidationError

OwnerKind = Literal["user", "weapon"]
Record = dict[str, Any]


class DataType(str, Enum):
    SKILL_BUILDS = "skill-builds"
    BATTLE_LOADOUTS = "battle-loadouts"
    MY_SPIRITS = "my-spirits"
    SPIRIT_BUILDS = "spirit-builds"
    ENGRAVING_BUILDS = "engraving-builds"
    GRID_SUBMISSION = "grid-submission"


@dataclass(frozen=True, slots=True)
class DataTypeConfig:
    label: str
    title_prefix: str
    items_name: str
    max_items: int | None
    owner_kind: OwnerKind = "user"
    dedupe_by_name: bool = True

    @property
    def item_name(self) -> str:
        return self.items_name[:-1] if self.items_name.endswith("s") else self.items_name

    def owner_label(self, owner_id: str | int) -> str:
        return f"{self.owner_kind}-id:{owner_id}"

    def issue_title(self, owner_name: str) -> str:
        return f"{self.title_prefix} {owner_name}"


DATA_TYPE_CONFIGS: dict[DataType, DataTypeConfig] = {
    DataType.SKILL_BUILDS: DataTypeConfig(
        label="skill-builds",
        title_prefix="[Skill Build]",
        items_name="builds",
        max_items=50,
    ),
    DataType.BATTLE_LOADOUTS: DataTypeConfig(
        label="battle-loadouts",
        title_prefix="[Battle Loadout]",
        items_name="loadouts",
        max_items=50,
    ),
    DataType.MY_SPIRITS: DataTypeConfig(
        label="my-spirits",
        title_prefix="[My Spirits]",
        items_name="spirits",
        max_items=500,
        dedupe_by_name=False,
    ),
    DataType.SPIRIT_BUILDS: DataTypeConfig(
        label="spirit-builds",
        title_prefix="[Spirit Build]",
        items_name="builds",
        max_items=50,
    ),
    DataType.ENGRAVING_BUILDS: DataTypeConfig(
        label="engraving-builds",
        title_prefix="[Soul Weapon Engraving]",
        items_name="builds",
        max_items=50,
    ),
    DataType.GRID_SUBMISSION: DataTypeConfig(
        label="soul-weapon-grids",
        title_prefix="[Soul Weapon Grid]",
        items_name="submissions",
        max_items=None,
        owner_kind="weapon",
        dedupe_by_name=False,
    ),
}

USER_DATA_TYPES: tuple[DataType, ...] = tuple(
    t for t, c in DATA_TYPE_CONFIGS.items() if c.owner_kind == "user"
)


def parse_data_type(value: Any, *, allowed: tuple[DataType, ...] | None = None) -> DataType:
    choices = allowed or tuple(DataType)
    if not value:
        raise ValidationError("Missing required parameter: type")
    try:
        data_type = DataType(str(value))
    except ValueError:
        data_type = None
    if data_type is None or data_type not in choices:
        raise ValidationError(
            f"Invalid type. Must be one of: {', '.join(t.value for t in choices)}"
        )
    return data_type


def config_for(data_type: DataType) -> DataTypeConfig:
    return DATA_TYPE_CONFIGS[data_type]
