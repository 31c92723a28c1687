"""
レベル計算ロジック
- 基本成長率: +5%
- 10レベルごとに+1%（上限+10%、つまり最大+15%）
"""
import math


class LevelCalculator:
    """経験値とレベルの変換"""

    START_THRESHOLD = 50  # レベル2に必要な経験値
    BASE_GROWTH = 1.05
    MAX_BONUS = 0.10
    MAX_LEVEL = 9999
    THRESHOLD_LIMIT = 1e18
    MAX_SAFE_INTEGER = 2 ** 53 - 1

    @classmethod
    def bonus_at(cls, level: int) -> float:
        """そのレベルでの成長ボーナス"""
        return min((level - 1) / 10 * 0.01, cls.MAX_BONUS)

    @classmethod
    def _grow(cls, threshold: float, new_level: int) -> float:
        return threshold * (cls.BASE_GROWTH + cls.bonus_at(new_level))

    @staticmethod
    def _round(value: float) -> int:
        # 0.5は切り上げ（銀行丸めではない）
        return math.floor(value + 0.5)

    @classmethod
    def calculate_level(cls, exp: int) -> int:
        """
        総経験値から現在のレベルを計算

        各レベルの必要量は四捨五入した整数で比較するので、
        experience_for_level の累計と必ず一致する
        """
        if exp <= 0:
            return 1

        level = 1
        threshold = float(cls.START_THRESHOLD)
        remaining = exp

        while level < cls.MAX_LEVEL and remaining >= cls._round(threshold):
            remaining -= cls._round(threshold)
            level += 1
            threshold = cls._grow(threshold, level)

            if threshold > cls.THRESHOLD_LIMIT:
                break

        return min(level, cls.MAX_LEVEL)

    @classmethod
    def experience_for_level(cls, level: int) -> int:
        """そのレベルに到達するのに必要な累計経験値"""
        if level <= 1:
            return 0

        total = 0
        threshold = float(cls.START_THRESHOLD)

        for i in range(1, level):
            total += cls._round(threshold)
            threshold = cls._grow(threshold, i + 1)

            if total > cls.MAX_SAFE_INTEGER:
                return cls.MAX_SAFE_INTEGER

        return total

    @classmethod
    def total_xp_for_next_level(cls, current_level: int) -> int:
        """現在のレベルの幅（次のレベルまでに必要な経験値の合計）"""
        return cls.experience_for_level(current_level + 1) - cls.experience_for_level(current_level)

    @classmethod
    def experience_to_next_level(cls, current_level: int, current_exp: int) -> int:
        """次のレベルまで残りの経験値"""
        if current_level >= cls.MAX_LEVEL:
            return 0

        exp_for_current = cls.experience_for_level(current_level)
        needed = cls.experience_for_level(current_level + 1) - exp_for_current
        have = current_exp - exp_for_current

        if have >= needed:
            return 0
        return needed - have

    @classmethod
    def progress_to_next(cls, current_level: int, current_exp: int) -> float:
        """次のレベルへの進捗（0.0 - 1.0）"""
        if current_level >= cls.MAX_LEVEL:
            return 1.0

        exp_for_current = cls.experience_for_level(current_level)
        need = cls.experience_for_level(current_level + 1) - exp_for_current
        have = current_exp - exp_for_current

        if need <= 0 or have >= need:
            return 1.0
        return max(have / need, 0.0)
