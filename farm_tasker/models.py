"""
データモデル定義
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


DIFFICULTIES = ("trifle", "easy", "normal", "hard")
PERIODS = ("day", "week", "month", "year")
RARITIES = ("common", "uncommon", "rare", "legendary", "Unique")
GOOD_TYPES = ("seed", "bed")


@dataclass
class Player:
    """プレイヤー状態モデル（レベル関連は経験値から導出）"""
    current_xp: int = 0
    current_level: int = 1
    current_level_xp: int = 0
    xp_to_next_level: int = 0
    coins: int = 0
    streak: int = 0
    did_task_today: bool = False
    is_drought: bool = False


@dataclass(frozen=True)
class Tag:
    """タグモデル"""
    id: int
    name: str = ""
    color: str = ""


@dataclass
class Task:
    """タスクモデル"""
    id: int
    title: str = ""
    description: str = ""
    difficulty: str = "normal"  # trifle, easy, normal, hard
    done: bool = False
    date: Optional[datetime] = None
    tag: Optional[Tag] = None


@dataclass
class Habit:
    """習慣モデル"""
    id: int
    title: str = ""
    description: str = ""
    difficulty: str = "normal"
    done: bool = False
    count: int = 0  # 完了回数
    period: str = "day"  # day, week, month, year
    every: int = 1  # 何periodごとか
    start_date: Optional[datetime] = None
    tag: Optional[Tag] = None


@dataclass
class Plant:
    """植えられた作物モデル"""
    id: int
    name: str = ""
    current_growth: int = 0
    target_growth: int = 1
    img_path: str = ""

    @property
    def is_grown(self) -> bool:
        """収穫可能か"""
        return self.current_growth >= self.target_growth

    @property
    def growth_percent(self) -> int:
        """成長率（0-100）"""
        if self.target_growth == 0:
            return 0
        return min((self.current_growth * 100) // self.target_growth, 100)


@dataclass
class Bed:
    """畑のマス"""
    id: int
    plant: Optional[Plant] = None
    is_lock: bool = False


@dataclass
class SeedStack:
    """所持している種"""
    id: int
    name: str = ""
    icon: str = ""
    target_growth: int = 1
    rarity: str = "common"
    seed_id: int = 0  # 種テンプレートのID
    quantity: int = 0


@dataclass
class ShopItem:
    """ショップの商品"""
    type: str  # seed, bed
    id: int
    quantity: int = 1
    cost: int = 0
    item: Optional[SeedStack] = None


def default_field(rows: int, cols: int) -> List[Bed]:
    """初期の畑（最初のマスだけ解放済み）"""
    return [Bed(id=i + 1, plant=None, is_lock=i > 0) for i in range(rows * cols)]


@dataclass
class FarmSnapshot:
    """同期レスポンスの検証済みスナップショット（Noneは「項目なし」）"""
    current_xp: int = 0
    coins: int = 0
    streak: int = 0
    did_task_today: bool = False
    is_drought: bool = False
    tasks: Optional[List[Task]] = None
    habits: Optional[List[Habit]] = None
    tags: Optional[List[Tag]] = None
    beds: Optional[List[Bed]] = None
    inventory_seeds: Optional[List[SeedStack]] = None
    shop_items: Optional[List[ShopItem]] = None
    warnings: List[str] = field(default_factory=list)
