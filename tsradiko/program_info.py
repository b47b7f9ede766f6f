"""
番組情報取得モジュール

このモジュールはRadikoの週間番組表から番組情報を取得します。
- 放送局・開始時刻から番組ブロックの特定
- 終了時刻・番組タイトルの抽出
- 保存ファイル名の生成
"""

import re
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Optional
from xml.sax.saxutils import unescape

from .error_handler import ProgramNotFoundError, ProtocolViolationError, TransportError
from .utils.base import LoggerMixin
from .utils.cancellation import CancelScope
from .utils.datetime_utils import parse_timestamp

# ファイル名に使えない文字
_FORBIDDEN_CHARS = re.compile(r'[\\/:*?"<>|]')
_UNDERSCORE_RUN = re.compile(r'_{2,}')
_WHITESPACE_RUN = re.compile(r'\s+')
_TITLE_PATTERN = re.compile(r'<title>([\s\S]*?)</title>')

# unescape() が標準で扱う &amp; &lt; &gt; に加える実体参照
_EXTRA_ENTITIES = {'&quot;': '"', '&apos;': "'", '&#39;': "'"}


def sanitize_filename_part(value: str) -> str:
    """ファイル名として安全な文字列に変換

    禁止文字を "_" に置換し、連続する "_" と空白をまとめて前後を除去する。
    結果が空なら "program" を返す。
    """
    value = _FORBIDDEN_CHARS.sub('_', value)
    value = _UNDERSCORE_RUN.sub('_', value)
    value = _WHITESPACE_RUN.sub(' ', value).strip()
    return value or "program"


def build_program_filename(title: str, ft: str) -> str:
    """"<タイトル> - <YYYYMMDD>.aac" 形式のファイル名"""
    return f"{sanitize_filename_part(title)} - {ft[:8]}.aac"


def decode_xml_text(value: str) -> str:
    """XML実体参照を復元"""
    return unescape(value, _EXTRA_ENTITIES)


@dataclass
class ProgramMeta:
    """番組メタ情報"""
    ft: str
    to: str
    title: str

    @property
    def start_time(self) -> datetime:
        return parse_timestamp(self.ft)

    @property
    def end_time(self) -> datetime:
        return parse_timestamp(self.to)

    @property
    def duration_seconds(self) -> int:
        """番組時間（秒）"""
        return int((self.end_time - self.start_time).total_seconds())

    def to_filename(self) -> str:
        """保存ファイル名生成

        Format:
            {sanitized title} - {YYYYMMDD}.aac
        """
        return build_program_filename(self.title, self.ft)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProgramMeta':
        return cls(**data)


class ProgramInfoManager(LoggerMixin):
    """番組情報管理クラス"""

    WEEKLY_PROGRAM_URL = "https://api.radiko.jp/program/v3/weekly/{station_id}.xml"

    def __init__(self, transport):
        super().__init__()
        self.transport = transport

    def resolve_meta(self, station_id: str, ft: str,
                     scope: Optional[CancelScope] = None) -> ProgramMeta:
        """放送局の週間番組表から開始時刻 ft の番組を取得

        Raises:
            TransportError: 番組表の取得が2xx以外の場合
            ProgramNotFoundError: 該当する番組ブロックがない場合
            ProtocolViolationError: 終了時刻が開始時刻以前の場合
        """
        url = self.WEEKLY_PROGRAM_URL.format(station_id=station_id)
        status, body = self.transport.get_text(url, scope=scope)
        if status < 200 or status >= 300:
            raise TransportError(f"weekly program fetch failed: {status}", status_code=status)

        meta = parse_program_block(body, ft)
        if meta is None:
            raise ProgramNotFoundError(f"program not found: station={station_id} ft={ft}")
        if meta.to <= meta.ft:
            raise ProtocolViolationError(
                f"program end is not after start: ft={meta.ft} to={meta.to}"
            )

        self.logger.info(f"番組情報取得: {meta.title} ({station_id} {meta.ft}-{meta.to})")
        return meta


def parse_program_block(xml_text: str, ft: str) -> Optional[ProgramMeta]:
    """番組表XMLから ft に一致する <prog> ブロックを抽出（なければNone）"""
    pattern = re.compile(
        r'<prog\s+[^>]*ft="' + re.escape(ft) + r'"\s+to="(\d{14})"[^>]*>([\s\S]*?)</prog>'
    )
    match = pattern.search(xml_text)
    if not match:
        return None

    to, block = match.group(1), match.group(2)
    title_match = _TITLE_PATTERN.search(block)
    title = decode_xml_text(title_match.group(1).strip()) if title_match else ""
    return ProgramMeta(ft=ft, to=to, title=title)
