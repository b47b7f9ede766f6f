"""
pytest configuration for TsRadiko tests

ネットワークに接続しないテストのための共通設定。
トランスポートとアプリ鍵のテスト用部品は tests/utils/fake_transport.py にある。
"""

import os
import sys
import warnings

import pytest

# ログ出力をテストモードに固定（ファイル出力なし、ERROR以上のみ）
os.environ.setdefault("TSRADIKO_TEST_MODE", "true")
os.environ.setdefault("TSRADIKO_CONSOLE_OUTPUT", "false")

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))


@pytest.fixture(autouse=True)
def ignore_resource_warnings():
    """ResourceWarningを無視"""
    warnings.filterwarnings("ignore", category=ResourceWarning)
    yield
