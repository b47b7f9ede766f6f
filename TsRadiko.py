#!/usr/bin/env python3
"""
TsRadiko - Radikoタイムフリー番組ダウンローダー

このファイルはTsRadikoのメインエントリーポイントです。
設定ファイルまたは引数で指定したリンクの番組を、1番組1つのAACファイルとして保存します。

使用例:
    # config.json の links を処理
    python TsRadiko.py

    # 設定ファイルを指定
    python TsRadiko.py --config custom_config.json

    # リンクを直接指定
    python TsRadiko.py "https://radiko.jp/#!/ts/TBS/20260219010000"
"""

import sys
from pathlib import Path

# プロジェクトルートディレクトリをPythonパスに追加
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

try:
    from tsradiko.cli import TsRadikoCLI
except ImportError as e:
    print(f"モジュールインポートエラー: {e}")
    print("必要な依存関係がインストールされていない可能性があります。")
    print("pip install -e . を実行してください。")
    sys.exit(1)


def main():
    """メインエントリーポイント"""
    cli = TsRadikoCLI()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()
