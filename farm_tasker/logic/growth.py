"""
作物の成長ロジック
"""
from dataclasses import replace
from typing import List

from ..models import Bed


class GrowthAdvancer:
    """タスク完了時に畑の作物を1段階成長させる"""

    def advance(self, field: List[Bed], is_drought: bool) -> List[Bed]:
        """
        成長途中の作物をすべて+1した新しい畑を返す
        日照り中は何もしない
        """
        if is_drought:
            return field

        advanced = []
        for bed in field:
            plant = bed.plant
            if plant is None or plant.current_growth >= plant.target_growth:
                advanced.append(bed)
                continue

            grown = replace(plant, current_growth=plant.current_growth + 1)
            advanced.append(replace(bed, plant=grown))

        return advanced

    def count_growing(self, field: List[Bed]) -> int:
        """成長途中の作物の数"""
        return len([
            bed for bed in field
            if bed.plant is not None and not bed.plant.is_grown
        ])
