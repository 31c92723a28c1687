"""
サーバーレスポンスの検証と変換
同期データ（/users/sync）や各APIの応答をモデルに変換する
"""
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..models import (
    DIFFICULTIES,
    GOOD_TYPES,
    PERIODS,
    RARITIES,
    Bed,
    FarmSnapshot,
    Habit,
    Plant,
    SeedStack,
    ShopItem,
    Tag,
    Task,
)


class SnapshotDecodeError(ValueError):
    """サーバーデータの形式エラー"""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message


def _require_mapping(value: Any, path: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise SnapshotDecodeError(path, f"expected object, got {type(value).__name__}")
    return value


def _int(data: Mapping[str, Any], key: str, path: str, default: Optional[int] = 0) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return default
    # boolはintのサブクラスなので除外
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SnapshotDecodeError(f"{path}.{key}", f"expected number, got {type(value).__name__}")
    if isinstance(value, float) and not value.is_integer():
        raise SnapshotDecodeError(f"{path}.{key}", f"expected integer, got {value}")
    return int(value)


def _bool(data: Mapping[str, Any], key: str, path: str, default: bool = False) -> bool:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise SnapshotDecodeError(f"{path}.{key}", f"expected boolean, got {type(value).__name__}")
    return value


def _str(data: Mapping[str, Any], key: str, path: str, default: str = "") -> str:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise SnapshotDecodeError(f"{path}.{key}", f"expected string, got {type(value).__name__}")
    return value


def _choice(data: Mapping[str, Any], key: str, path: str, choices, default: str) -> str:
    value = _str(data, key, path, default=default)
    if value not in choices:
        raise SnapshotDecodeError(f"{path}.{key}", f"unknown value {value!r}")
    return value


def _id(data: Mapping[str, Any], path: str) -> int:
    value = _int(data, "id", path, default=None)
    if value is None:
        raise SnapshotDecodeError(f"{path}.id", "missing id")
    return value


def parse_datetime(value: Any, path: str = "date") -> Optional[datetime]:
    """ISO 8601文字列をdatetimeに変換"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise SnapshotDecodeError(path, f"expected ISO date string, got {type(value).__name__}")
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise SnapshotDecodeError(path, str(e)) from e


def tag_from_dict(data: Any, path: str = "tag") -> Optional[Tag]:
    if data is None:
        return None
    data = _require_mapping(data, path)
    return Tag(
        id=_id(data, path),
        name=_str(data, "name", path),
        color=_str(data, "color", path),
    )


def task_from_dict(data: Any, path: str = "task") -> Task:
    data = _require_mapping(data, path)
    return Task(
        id=_id(data, path),
        title=_str(data, "title", path),
        description=_str(data, "description", path),
        difficulty=_choice(data, "difficulty", path, DIFFICULTIES, "normal"),
        done=_bool(data, "done", path),
        date=parse_datetime(data.get("date"), f"{path}.date"),
        tag=tag_from_dict(data.get("tag"), f"{path}.tag"),
    )


def habit_from_dict(data: Any, path: str = "habit") -> Habit:
    data = _require_mapping(data, path)
    return Habit(
        id=_id(data, path),
        title=_str(data, "title", path),
        description=_str(data, "description", path),
        difficulty=_choice(data, "difficulty", path, DIFFICULTIES, "normal"),
        done=_bool(data, "done", path),
        count=_int(data, "count", path),
        period=_choice(data, "period", path, PERIODS, "day"),
        every=_int(data, "every", path, default=1),
        start_date=parse_datetime(data.get("startDate"), f"{path}.startDate"),
        tag=tag_from_dict(data.get("tag"), f"{path}.tag"),
    )


def plant_from_dict(data: Any, path: str = "plant") -> Optional[Plant]:
    if data is None:
        return None
    data = _require_mapping(data, path)
    return Plant(
        id=_id(data, path),
        name=_str(data, "name", path),
        current_growth=_int(data, "currentGrowth", path),
        target_growth=_int(data, "targetGrowth", path, default=1),
        img_path=_str(data, "imgPath", path),
    )


def bed_from_dict(data: Any, path: str = "bed") -> Bed:
    data = _require_mapping(data, path)
    return Bed(
        id=_id(data, path),
        plant=plant_from_dict(data.get("plant"), f"{path}.plant"),
        is_lock=_bool(data, "isLock", path),
    )


def seed_from_dict(data: Any, path: str = "seed") -> SeedStack:
    data = _require_mapping(data, path)
    return SeedStack(
        id=_id(data, path),
        name=_str(data, "name", path),
        icon=_str(data, "icon", path),
        target_growth=_int(data, "targetGrowth", path, default=1),
        rarity=_choice(data, "rarity", path, RARITIES, "common"),
        seed_id=_int(data, "seedId", path),
        quantity=_int(data, "quantity", path, default=1),
    )


def shop_item_from_dict(data: Any, path: str = "good") -> ShopItem:
    data = _require_mapping(data, path)
    item = data.get("item")
    return ShopItem(
        type=_choice(data, "type", path, GOOD_TYPES, "seed"),
        id=_id(data, path),
        quantity=_int(data, "quantity", path, default=1),
        cost=_int(data, "cost", path),
        item=seed_from_dict(item, f"{path}.item") if item is not None else None,
    )


def _list(data: Mapping[str, Any], keys, path: str, convert: Callable[[Any, str], Any]) -> Optional[List[Any]]:
    """リスト項目の変換（キーがなければNone）"""
    for key in keys:
        if key in data and data[key] is not None:
            value = data[key]
            if not isinstance(value, list):
                raise SnapshotDecodeError(f"{path}.{key}", f"expected array, got {type(value).__name__}")
            return [convert(entry, f"{path}.{key}[{i}]") for i, entry in enumerate(value)]
    return None


SCALAR_KEYS = ("currentXp", "coins", "didTaskToday", "isDrought")


def decode_snapshot(payload: Any) -> FarmSnapshot:
    """
    同期レスポンスを検証してFarmSnapshotに変換

    数値・真偽値の項目が欠けていれば0/Falseにする（warningsに記録）。
    配列が欠けていればNoneとして「項目なし」を表す。
    型が違う場合はSnapshotDecodeErrorを送出する。
    """
    data: Dict[str, Any] = dict(_require_mapping(payload, "sync"))
    path = "sync"

    warnings = [f"missing {key}" for key in SCALAR_KEYS if key not in data]
    # 旧クライアントのキー名（strick）にも対応
    streak_key = "streak" if "streak" in data else "strick"
    if streak_key not in data:
        warnings.append("missing streak")

    return FarmSnapshot(
        current_xp=max(0, _int(data, "currentXp", path)),
        coins=max(0, _int(data, "coins", path)),
        streak=max(0, _int(data, streak_key, path)),
        did_task_today=_bool(data, "didTaskToday", path),
        is_drought=_bool(data, "isDrought", path),
        tasks=_list(data, ("tasks",), path, task_from_dict),
        habits=_list(data, ("habits",), path, habit_from_dict),
        tags=_list(data, ("tags",), path, tag_from_dict),
        beds=_list(data, ("field",), path, bed_from_dict),
        inventory_seeds=_list(data, ("inventorySeeds",), path, seed_from_dict),
        shop_items=_list(data, ("shopItems", "shopItem"), path, shop_item_from_dict),
        warnings=warnings,
    )
