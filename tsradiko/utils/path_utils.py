"""
パス処理ユーティリティ

出力ディレクトリ・キャッシュファイルのディレクトリ作成を統一
"""

from pathlib import Path
from typing import Union

PathLike = Union[str, Path]


def ensure_directory_exists(file_path: PathLike) -> Path:
    """ファイルの親ディレクトリを作成してファイルのPathを返す

    Example:
        cache_path = ensure_directory_exists(".cache/auth-tokens.json")
        cache_path.write_text("{}")
    """
    path = Path(file_path)
    ensure_directory_path_exists(path.parent)
    return path


def ensure_directory_path_exists(dir_path: PathLike) -> Path:
    """ディレクトリを作成してPathを返す

    同名のファイルが既にある場合は FileExistsError（OSError）になる。

    Example:
        output_dir = ensure_directory_path_exists("downloads")
        output_file = output_dir / "program - 20260219.aac"
    """
    path = Path(dir_path).expanduser()
    path.mkdir(parents=True, exist_ok=True)
    return path
