"""
日時処理ユーティリティ

Radikoが使う14桁タイムスタンプ（YYYYMMDDHHMMSS, 日本時間）の
解析・整形・加算を統一提供します。
"""

import re
from datetime import datetime, timedelta
from typing import Optional

import pytz

JST = pytz.timezone('Asia/Tokyo')
TIMESTAMP_FORMAT = '%Y%m%d%H%M%S'

_TIMESTAMP_PATTERN = re.compile(r'^\d{14}$')


def parse_timestamp(value: str) -> datetime:
    """14桁タイムスタンプを日本時間のdatetimeに変換

    Args:
        value: "YYYYMMDDHHMMSS" 形式の文字列

    Returns:
        datetime: タイムゾーン付きdatetime（Asia/Tokyo）

    Raises:
        ValueError: 14桁の数字でない、または暦として不正な場合
    """
    if not isinstance(value, str) or not _TIMESTAMP_PATTERN.match(value):
        raise ValueError(f"invalid timestamp: {value}")
    try:
        naive = datetime.strptime(value, TIMESTAMP_FORMAT)
    except ValueError:
        raise ValueError(f"invalid timestamp: {value}") from None
    return JST.localize(naive)


def format_timestamp(value: datetime) -> str:
    """datetimeを14桁タイムスタンプに変換（aware datetimeは日本時間に変換）"""
    if value.tzinfo is not None:
        value = value.astimezone(JST)
    return value.strftime(TIMESTAMP_FORMAT)


def step_timestamp(value: str, seconds: int) -> str:
    """14桁タイムスタンプを指定秒数だけ進める

    Example:
        step_timestamp("20260219000000", 300)  # "20260219000500"
    """
    # 壁時計上の加算（日本時間は夏時間なし）
    naive = parse_timestamp(value).replace(tzinfo=None)
    return (naive + timedelta(seconds=seconds)).strftime(TIMESTAMP_FORMAT)


def is_valid_timestamp(value: str) -> bool:
    """14桁タイムスタンプとして有効か"""
    try:
        parse_timestamp(value)
    except ValueError:
        return False
    return True


def now_timestamp(now: Optional[datetime] = None) -> str:
    """現在時刻（日本時間）の14桁タイムスタンプ"""
    if now is None:
        now = datetime.now(JST)
    return format_timestamp(now)
