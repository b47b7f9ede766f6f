"""
TsRadiko ユーティリティモジュール

共通機能やヘルパー関数を提供するユーティリティパッケージ
"""

from typing import List
from .base import LoggerMixin
from .cancellation import CancelScope, background_scope
from .datetime_utils import parse_timestamp, format_timestamp, step_timestamp
from .path_utils import ensure_directory_exists, ensure_directory_path_exists
from .network_utils import create_radiko_session

__all__: List[str] = [
    'LoggerMixin',
    'CancelScope',
    'background_scope',
    'parse_timestamp',
    'format_timestamp',
    'step_timestamp',
    'ensure_directory_exists',
    'ensure_directory_path_exists',
    'create_radiko_session'
]
