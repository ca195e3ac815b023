"""Pytest configuration to ensure session-less backend access during tests."""

import os

# Disable session authentication by default so API tests can act as any owner via the
# X-User-Id header. Individual tests can override this via monkeypatch when needed.
os.environ.setdefault("DISABLE_SESSION_AUTH", "true")
# Provide a deterministic yet secure-length session secret for tests to satisfy
# 起動時バリデーション。実運用では `.env` で個別に乱数値を設定すること。
os.environ.setdefault("SESSION_SECRET_KEY", "S9kD2fH5jL8pQ1tV4yX7zB0cN3mR6wA9")
# store の import 時に実 Firestore へ接続しないよう、既定でエミュレータ扱いにする
os.environ.setdefault("FIRESTORE_EMULATOR_HOST", "localhost:8080")
os.environ.setdefault("FIRESTORE_PROJECT_ID", "test-project")
