"""
報酬反映ロジック（経験値・コイン）
"""
import logging
from typing import Tuple

from ..models import Player
from .level_calculator import LevelCalculator

LOGGER = logging.getLogger(__name__)


class RewardApplier:
    """プレイヤーの経験値・コインを更新し、レベル関連の値を揃える"""

    def __init__(self, player: Player):
        self.player = player

    def apply_xp(self, total_xp: int, force: bool = False) -> Tuple[int, int]:
        """
        総経験値をセットしてレベルを再計算

        Returns:
            (変更前のレベル, 変更後のレベル)
        """
        player = self.player
        old_level = player.current_level
        new_level = LevelCalculator.calculate_level(total_xp)

        player.current_xp = total_xp
        player.current_level = new_level

        if force or new_level != old_level:
            player.xp_to_next_level = LevelCalculator.total_xp_for_next_level(new_level)
            if new_level > old_level and not force:
                LOGGER.info("Level up: %d -> %d", old_level, new_level)

        player.current_level_xp = max(0, total_xp - LevelCalculator.experience_for_level(new_level))
        return old_level, new_level

    def grant_xp(self, amount: int) -> Tuple[int, int]:
        """経験値を加算（0未満にはならない）"""
        return self.apply_xp(max(0, self.player.current_xp + amount))

    def spend_xp(self, amount: int) -> Tuple[int, int]:
        """経験値を減算（0未満にはならない）"""
        return self.apply_xp(max(0, self.player.current_xp - amount))

    def set_coins(self, coins: int):
        self.player.coins = max(0, coins)

    def grant_coins(self, amount: int):
        """コインを加算"""
        self.set_coins(self.player.coins + amount)

    def spend_coins(self, amount: int):
        """コインを減算（0未満にはならない）"""
        self.set_coins(self.player.coins - amount)
