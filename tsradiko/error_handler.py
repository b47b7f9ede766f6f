"""
エラーハンドリングモジュール

このモジュールはTsRadikoの統一例外階層を提供します。
- エラーカテゴリ・重要度
- 通信・プロトコル・解決失敗・期限切れ・キャンセルの各例外
- CLI向けのエラーメッセージ整形
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """エラー重要度"""
    LOW = "low"           # 軽微な警告
    MEDIUM = "medium"     # 注意が必要なエラー
    HIGH = "high"         # 重要なエラー
    CRITICAL = "critical" # 致命的なエラー


class ErrorCategory(Enum):
    """エラーカテゴリ"""
    NETWORK = "network"                   # 通信関連
    PROTOCOL = "protocol"                 # 応答形式・ヘッダー不正
    AUTHENTICATION = "authentication"     # 認証関連
    NOT_FOUND = "not_found"               # 地域・番組・候補が見つからない
    STREAMING = "streaming"               # プレイリスト関連
    LINK = "link"                         # 入力リンク関連
    CONFIGURATION = "configuration"       # 設定関連
    CANCELLED = "cancelled"               # キャンセル・タイムアウト
    UNKNOWN = "unknown"                   # 不明


class TsRadikoError(Exception):
    """TsRadiko基底例外クラス"""

    category = ErrorCategory.UNKNOWN
    severity = ErrorSeverity.MEDIUM

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


# 通信エラー

class TransportError(TsRadikoError):
    """HTTP通信エラー（非2xx応答を含む）"""
    category = ErrorCategory.NETWORK

    def __init__(self, message: str, status_code: Optional[int] = None,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context)
        self.status_code = status_code


class TransportTransientError(TransportError):
    """一時的な通信エラー（リトライ対象）"""
    severity = ErrorSeverity.LOW


class TransportPermanentError(TransportError):
    """恒久的な通信エラー（リトライしない）"""
    severity = ErrorSeverity.HIGH


class SegmentDownloadError(TransportError):
    """セグメントダウンロードエラー"""

    def __init__(self, message: str, segment_index: int = -1,
                 status_code: Optional[int] = None,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=status_code, context=context)
        self.segment_index = segment_index


# プロトコル違反

class ProtocolViolationError(TsRadikoError):
    """応答ヘッダー・応答内容の不正"""
    category = ErrorCategory.PROTOCOL
    severity = ErrorSeverity.HIGH


class InvalidKeyRangeError(ProtocolViolationError):
    """auth1が返した部分キー範囲の不正"""


class InvalidRegionError(ProtocolViolationError):
    """地域IDの不正"""


class AuthenticationError(TsRadikoError):
    """認証エラー（auth1/auth2の失敗応答）"""
    category = ErrorCategory.AUTHENTICATION
    severity = ErrorSeverity.HIGH

    def __init__(self, message: str, status_code: Optional[int] = None,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context)
        self.status_code = status_code


# 解決失敗

class NotFoundError(TsRadikoError):
    """地域・番組・候補の解決失敗"""
    category = ErrorCategory.NOT_FOUND


class RegionNotFoundError(NotFoundError):
    """放送局の地域IDが見つからない"""


class ProgramNotFoundError(NotFoundError):
    """番組表に該当番組が見つからない"""


class NoUsableCandidateError(NotFoundError):
    """検索結果に利用可能な番組がない"""


class PlaylistExpiredError(TsRadikoError):
    """シーク窓が認可されていない（403/expired）"""
    category = ErrorCategory.STREAMING
    severity = ErrorSeverity.HIGH


class NoSegmentsError(TsRadikoError):
    """プレイリストにセグメントが含まれていない"""
    category = ErrorCategory.STREAMING


# 入力リンク

class LinkError(TsRadikoError):
    """入力リンクエラー"""
    category = ErrorCategory.LINK


class UnsupportedLinkError(LinkError):
    """対応していないリンク形式"""


class InvalidLinkError(LinkError):
    """詳細リンクの形式不正"""


class ConfigurationError(TsRadikoError):
    """設定エラー"""
    category = ErrorCategory.CONFIGURATION
    severity = ErrorSeverity.CRITICAL


class OperationCancelledError(TsRadikoError):
    """キャンセルまたはタイムアウト"""
    category = ErrorCategory.CANCELLED
    severity = ErrorSeverity.LOW


def format_error(error: BaseException) -> str:
    """ユーザー表示用のエラーメッセージを生成

    Args:
        error: 例外

    Returns:
        str: "[category] message" 形式の文字列
    """
    if isinstance(error, TsRadikoError):
        return f"[{error.category.value}] {error.message}"
    if isinstance(error, OSError):
        return f"[file_system] {error}"
    return f"[{ErrorCategory.UNKNOWN.value}] {type(error).__name__}: {error}"
