"""
リンク解決モジュール

このモジュールはユーザー入力のRadikoリンクを番組詳細リンクに解決します。
- リンク種別の判定（検索 / 詳細 / 非対応）
- 詳細リンクからの放送局ID・開始時刻の抽出
- 検索APIによる候補取得と最新候補の選択
"""

import json
import re
import secrets
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional
from urllib.parse import parse_qs, urlencode, urlsplit

from .error_handler import (
    InvalidLinkError, NoUsableCandidateError, TsRadikoError, UnsupportedLinkError
)
from .utils.base import LoggerMixin
from .utils.cancellation import CancelScope
from .utils.datetime_utils import is_valid_timestamp, now_timestamp

SEARCH_MARKER = "#!/search/timeshift"
DETAIL_MARKER = "#!/ts/"
DETAIL_URL_TEMPLATE = "https://radiko.jp/#!/ts/{station_id}/{ft}"

_START_TIME_PATTERN = re.compile(
    r'^(\d{4})-(\d{2})-(\d{2})[ T](\d{2}):(\d{2}):(\d{2})$'
)


class LinkKind(Enum):
    """リンク種別"""
    SEARCH = "search"
    DETAIL = "detail"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class DetailRef:
    """番組インスタンスの識別子（放送局ID + 開始時刻）"""
    station_id: str
    ft: str

    @property
    def detail_url(self) -> str:
        return DETAIL_URL_TEMPLATE.format(station_id=self.station_id, ft=self.ft)


def classify_link(raw_url: str) -> LinkKind:
    """リンク種別を判定"""
    if SEARCH_MARKER in raw_url:
        return LinkKind.SEARCH
    if DETAIL_MARKER in raw_url:
        return LinkKind.DETAIL
    return LinkKind.UNSUPPORTED


def extract_detail(detail_url: str) -> DetailRef:
    """詳細リンク（https://radiko.jp/#!/ts/{station}/{ft}）を解析

    Raises:
        InvalidLinkError: 形式不正、または ft が有効な14桁タイムスタンプでない場合
    """
    try:
        fragment = urlsplit(detail_url).fragment
    except ValueError:
        raise InvalidLinkError(f"invalid detail URL: {detail_url}") from None

    fragment = fragment.lstrip('!').lstrip('/')
    parts = fragment.split('/')
    if len(parts) < 3 or parts[0] != 'ts' or not parts[1]:
        raise InvalidLinkError(f"invalid detail URL: {detail_url}")

    ft = parts[2]
    if not is_valid_timestamp(ft):
        raise InvalidLinkError(f"invalid ft timestamp in detail URL: {detail_url}")
    return DetailRef(station_id=parts[1], ft=ft)


def extract_search_key(raw_url: str) -> str:
    """検索リンクのフラグメント内クエリから key を取り出す（なければ空文字）"""
    try:
        fragment = urlsplit(raw_url).fragment
    except ValueError:
        return ""
    if fragment.startswith('!'):
        fragment = fragment[1:]
    _, separator, query = fragment.partition('?')
    if not separator or not query:
        return ""
    values = parse_qs(query).get('key')
    return values[0] if values else ""


def to_ft_timestamp(start_time: str) -> str:
    """"YYYY-MM-DD HH:MM:SS" を14桁タイムスタンプに変換（不一致は空文字）"""
    match = _START_TIME_PATTERN.match(start_time or "")
    if not match:
        return ""
    return "".join(match.groups())


def build_detail_urls_from_search(payload: bytes) -> List[str]:
    """検索APIのJSON応答から詳細リンクを生成

    station_id / start_time が欠けている、または start_time の形式が
    一致しないレコードは読み飛ばす。

    Raises:
        ValueError: JSONとして解釈できない場合
    """
    root = json.loads(payload)
    records = root.get('data') if isinstance(root, dict) else None
    urls = []
    for record in records or []:
        if not isinstance(record, dict):
            continue
        station_id = record.get('station_id')
        start_time = record.get('start_time')
        if not station_id or not isinstance(start_time, str):
            continue
        ft = to_ft_timestamp(start_time)
        if not ft:
            continue
        urls.append(DETAIL_URL_TEMPLATE.format(station_id=station_id, ft=ft))
    return urls


def pick_latest_detail_url(urls: List[str], now: Optional[datetime] = None) -> str:
    """未来の番組を除き、開始時刻が最も新しい詳細リンクを選択

    Raises:
        NoUsableCandidateError: 利用可能な候補がない場合
    """
    now_ts = now_timestamp(now)
    best_url, best_ft = None, None
    for url in urls:
        try:
            ft = extract_detail(url).ft
        except InvalidLinkError:
            continue
        # 固定幅の数字列なので文字列比較で時系列比較になる
        if ft > now_ts:
            continue
        if best_ft is None or ft > best_ft:
            best_url, best_ft = url, ft
    if best_url is None:
        raise NoUsableCandidateError("no usable detail URL found in search results")
    return best_url


class LinkResolver(LoggerMixin):
    """入力リンクを番組詳細リンクに解決するクラス"""

    SEARCH_API_URL = "https://api.annex-cf.radiko.jp/v1/programs/legacy/perl/program/search"

    def __init__(self, transport, clock: Optional[Callable[[], datetime]] = None):
        super().__init__()
        self.transport = transport
        self._clock = clock

    def resolve_to_detail(self, raw_url: str, scope: Optional[CancelScope] = None) -> str:
        """検索リンクまたは詳細リンクから詳細リンクを得る

        Raises:
            UnsupportedLinkError: 検索リンクでも詳細リンクでもない場合
            NoUsableCandidateError: 検索結果に利用可能な候補がない場合
        """
        kind = classify_link(raw_url)
        if kind is LinkKind.DETAIL:
            return raw_url
        if kind is not LinkKind.SEARCH:
            raise UnsupportedLinkError(f"unsupported link: {raw_url}")

        candidates = self.fetch_search_candidates(raw_url, scope)
        self.logger.info(f"検索候補: {len(candidates)}件 ({raw_url})")
        now = self._clock() if self._clock else None
        return pick_latest_detail_url(candidates, now)

    def fetch_search_candidates(self, raw_url: str,
                                scope: Optional[CancelScope] = None) -> List[str]:
        """検索APIから候補の詳細リンクを取得

        検索キーが空、通信失敗、2xx以外の応答、JSON不正はいずれも
        候補0件として扱い、例外は送出しない。
        """
        key = extract_search_key(raw_url)
        if not key:
            return []

        query = urlencode({
            'key': key,
            'filter': '',
            'start_day': '',
            'end_day': '',
            'area_id': '',
            'cur_area_id': '',
            'uid': secrets.token_hex(16),
            'row_limit': '12',
            'app_id': 'pc',
            'action_id': '0',
        })
        try:
            status, body = self.transport.get_bytes(f"{self.SEARCH_API_URL}?{query}", scope=scope)
        except TsRadikoError as e:
            self.logger.warning(f"検索API呼び出し失敗（候補0件として扱う）: {e}")
            return []
        if status < 200 or status >= 300:
            self.logger.warning(f"検索API応答エラー（候補0件として扱う）: HTTP {status}")
            return []
        try:
            return build_detail_urls_from_search(body)
        except ValueError as e:
            self.logger.warning(f"検索API応答の解析失敗（候補0件として扱う）: {e}")
            return []
