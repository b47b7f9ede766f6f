"""
ネットワーク処理ユーティリティ

Radiko API用の requests.Session 作成を統一します。
全コンポーネントはこのセッション（コネクションプール）を共有します。
"""

from typing import Dict, Optional

import requests
from requests.adapters import HTTPAdapter

DEFAULT_POOL_CONNECTIONS = 100
DEFAULT_POOL_MAXSIZE = 20


def create_radiko_session(
    additional_headers: Optional[Dict[str, str]] = None,
    pool_connections: int = DEFAULT_POOL_CONNECTIONS,
    pool_maxsize: int = DEFAULT_POOL_MAXSIZE
) -> requests.Session:
    """Radiko API用の標準セッションを作成

    Args:
        additional_headers: 追加ヘッダー辞書
        pool_connections: プールするホスト数
        pool_maxsize: ホストあたりの最大接続数

    Returns:
        requests.Session: 設定済みセッション

    Note:
        リトライは RetryingTransport が担うため、アダプター側では行わない
        (max_retries=0)。
    """
    session = requests.Session()

    standard_headers = {
        'Accept': '*/*',
        'Accept-Language': 'ja,en;q=0.9',
        'Connection': 'keep-alive'
    }
    if additional_headers:
        standard_headers.update(additional_headers)
    session.headers.update(standard_headers)

    adapter = HTTPAdapter(
        pool_connections=pool_connections,
        pool_maxsize=pool_maxsize,
        max_retries=0
    )
    session.mount('https://', adapter)
    session.mount('http://', adapter)
    return session
