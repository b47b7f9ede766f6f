"""
TsRadiko テストパッケージ

このパッケージはTsRadikoの全モジュールに対する単体テストを提供します。
ネットワークには接続せず、通信は tests/utils/fake_transport.py で置き換える。

テスト構造:
- test_transport.py: リトライ付きHTTPトランスポートのテスト
- test_cancellation.py: キャンセルスコープのテスト
- test_datetime_utils.py: タイムスタンプ処理のテスト
- test_region_mapper.py: 地域ID・放送局キャッシュのテスト
- test_auth.py: 認証モジュールのテスト
- test_link_resolver.py: リンク解決のテスト
- test_program_info.py: 番組情報モジュールのテスト
- test_streaming.py: セグメントURL展開のテスト
- test_segment_downloader.py: 並列ダウンロード・結合のテスト
- test_timefree_recorder.py: 録音全工程の統合テスト
- test_config_manager.py: 設定管理のテスト
- test_error_handler.py: エラーハンドリングモジュールのテスト
- test_cli.py: CLIインターフェースのテスト
"""

import sys
from pathlib import Path

# プロジェクトルートをパスに追加
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
