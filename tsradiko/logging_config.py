"""
ログ設定モジュール

通常時はローテーション付きのログファイルに出力し、
TSRADIKO_CONSOLE_OUTPUT=true の場合は標準エラーにも出力します。
テスト時（TSRADIKO_TEST_MODE=true または pytest 実行中）はERROR以上のみで、
ログファイルは作成しません。
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional, Union

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DEFAULT_LOG_FILE = "tsradiko.log"
MAX_LOG_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 5

_configured = False


def _env_flag(name: str) -> Optional[bool]:
    value = os.environ.get(name, '').lower()
    if value in ('true', 'false'):
        return value == 'true'
    return None


def _in_test_mode() -> bool:
    return bool(_env_flag('TSRADIKO_TEST_MODE')) or 'pytest' in sys.modules


def _resolve_level(log_level: Optional[Union[str, int]]) -> int:
    if log_level is None:
        log_level = os.environ.get('TSRADIKO_LOG_LEVEL', logging.INFO)
    if isinstance(log_level, str):
        log_level = getattr(logging, log_level.upper(), logging.INFO)
    return log_level


def setup_logging(log_level: Optional[Union[str, int]] = None,
                  log_file: Optional[str] = None) -> None:
    """ルートロガーを設定（2回目以降は reset_logging まで何もしない）

    Args:
        log_level: ログレベル名または数値（未指定時は TSRADIKO_LOG_LEVEL）
        log_file: ログファイルパス（未指定時は TSRADIKO_LOG_FILE、空文字でファイル出力なし）
    """
    global _configured
    if _configured:
        return

    test_mode = _in_test_mode()
    level = _resolve_level(log_level)
    if test_mode:
        level = max(level, logging.ERROR)
    if log_file is None:
        log_file = os.environ.get('TSRADIKO_LOG_FILE', DEFAULT_LOG_FILE)

    handlers: List[logging.Handler] = []
    if log_file and not test_mode:
        try:
            Path(log_file).expanduser().parent.mkdir(parents=True, exist_ok=True)
            handlers.append(RotatingFileHandler(
                Path(log_file).expanduser(), maxBytes=MAX_LOG_BYTES,
                backupCount=BACKUP_COUNT, encoding='utf-8'
            ))
        except OSError as e:
            print(f"Warning: ログファイルを作成できません: {e}", file=sys.stderr)

    console = _env_flag('TSRADIKO_CONSOLE_OUTPUT')
    if console if console is not None else test_mode:
        handlers.append(logging.StreamHandler(sys.stderr))

    logging.basicConfig(
        level=level,
        handlers=handlers or [logging.NullHandler()],
        format=LOG_FORMAT,
        datefmt='%Y-%m-%d %H:%M:%S',
        force=True
    )
    # urllib3の接続ログは冗長
    logging.getLogger('urllib3').setLevel(max(level, logging.WARNING))
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """ロガーを取得（未設定なら既定値で設定する）"""
    if not _configured:
        setup_logging()
    return logging.getLogger(name)


def reset_logging() -> None:
    """ルートロガーのハンドラーを閉じて未設定状態に戻す"""
    global _configured
    _configured = False
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
