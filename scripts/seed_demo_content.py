#!/usr/bin/env python
"""デモ用の学習コンテンツを Firestore（エミュレータを含む）へ流し込むユーティリティ。"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--owner-id",
        default=os.environ.get("DEV_USER_ID", "local-dev"),
        help="デモ項目の所有者 ID（既定: local-dev）。",
    )
    parser.add_argument(
        "--text-path",
        default=None,
        type=Path,
        help="`---` 区切りのテキストから読み込む場合のパス。省略時は組み込みのデモ項目。",
    )
    parser.add_argument(
        "--subject",
        default="General",
        help="--text-path 使用時に付与する科目名（既定: General）。",
    )
    parser.add_argument(
        "--project-id",
        default=os.environ.get("FIRESTORE_PROJECT_ID", "studyshelf-local"),
        help="適用先 Firestore プロジェクト ID（既定: studyshelf-local）。",
    )
    parser.add_argument(
        "--emulator-host",
        default=os.environ.get("FIRESTORE_EMULATOR_HOST", "127.0.0.1:8080"),
        help="FIRESTORE_EMULATOR_HOST に渡すホスト:ポート（既定: 127.0.0.1:8080）。",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="既存の項目があっても投入する場合に指定。",
    )
    parser.add_argument(
        "--print-token",
        action="store_true",
        help="所有者 ID 用のセッショントークンを表示する（SESSION_SECRET_KEY が必要）。",
    )
    return parser


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    # 設定クラスは import 時点で環境変数を読むため、先に上書きしてから studyshelf を読み込む。
    os.environ.setdefault("FIRESTORE_PROJECT_ID", str(args.project_id))
    os.environ.setdefault("GOOGLE_CLOUD_PROJECT", str(args.project_id))
    if args.emulator_host:
        os.environ.setdefault("FIRESTORE_EMULATOR_HOST", str(args.emulator_host))

    repo_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(repo_root / "apps" / "backend"))

    from studyshelf.auth import issue_session_token
    from studyshelf.seed_demo import (
        DEMO_CONTENTS,
        load_demo_contents,
        seed_demo_contents,
        seed_demo_contents_if_empty,
    )
    from studyshelf.store import store

    contents = (
        load_demo_contents(args.text_path, subject_name=args.subject)
        if args.text_path
        else list(DEMO_CONTENTS)
    )
    if args.force:
        ids = seed_demo_contents(store, args.owner_id, contents)
    else:
        ids = seed_demo_contents_if_empty(store, args.owner_id, contents)
        if not ids:
            print(f"Owner {args.owner_id} already has content. Skipping seed.")
    print(f"Seeded {len(ids)} items for {args.owner_id} into Firestore ({args.project_id}).")
    if args.print_token:
        print(issue_session_token(args.owner_id))


if __name__ == "__main__":
    main()
