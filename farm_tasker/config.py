"""
設定読み込みモジュール
環境変数（.env対応）からAPI接続設定とロギング設定を読み込む
"""
import logging
import os

from dotenv import load_dotenv

# 環境変数を読み込み
load_dotenv()

API_BASE_URL = os.getenv("FARM_API_BASE_URL", "")
API_TIMEOUT = float(os.getenv("FARM_API_TIMEOUT", "10.0"))
# ユーザー特定前に使う仮のユーザーID（0は「未設定」）
DEFAULT_USER_ID = int(os.getenv("FARM_DEFAULT_USER_ID", "0"))
LOG_LEVEL = os.getenv("FARM_LOG_LEVEL", "INFO")

# 畑のサイズ
FIELD_ROWS = 3
FIELD_COLS = 3

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str = None) -> logging.Logger:
    """farm_taskerロガーを設定して返す"""
    logger = logging.getLogger("farm_tasker")
    logger.setLevel((level or LOG_LEVEL).upper())

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    return logger
