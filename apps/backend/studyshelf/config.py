from typing import Annotated

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources.types import NoDecode


_MIN_SESSION_SECRET_KEY_LENGTH = 32
_PLACEHOLDER_SESSION_SECRETS = frozenset({
    "change-me",
    "changeme",
    "change-me-to-random-value",
    "please-change-me",
})


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    環境変数（および `.env`）から読み込まれるアプリ設定。
    - environment: 実行環境（development/staging/production など）
    - session_*: 外部セッションプロバイダと共有する署名付き Cookie の設定
    - firestore_*: コンテンツを保存するドキュメントストアの接続先
    """

    environment: str = Field(
        default="development",
        description="Runtime environment / 実行環境",
    )

    # --- Session (external identity provider) ---
    session_secret_key: str = Field(
        default="",
        validate_default=True,
        description="Secret key for signing session cookies / セッションクッキー署名用シークレット",
    )
    session_cookie_name: str = Field(
        default="ss_session",
        description="Session cookie name / セッションクッキー名",
    )
    session_cookie_secure: bool = Field(
        default=False,
        description="Whether to mark session cookie as Secure / セッションクッキーにSecure属性を付与するか",
    )
    session_max_age_seconds: int = Field(
        default=60 * 60 * 24 * 14,
        description="Session lifetime in seconds / セッションの寿命（秒）",
    )
    disable_session_auth: bool = Field(
        default=False,
        description=(
            "Disable session cookie authentication (development/testing only) / "
            "セッションクッキー認証を無効化する（開発・テスト用途のみ）"
        ),
    )
    dev_user_id: str = Field(
        default="local-dev",
        description=(
            "Owner id used when session auth is disabled and no X-User-Id header is sent / "
            "認証無効時に X-User-Id が無い場合の所有者ID"
        ),
    )

    # --- Firestore ---
    gcp_project_id: str | None = Field(
        default=None,
        description="GCP project id / GCP プロジェクトID",
        validation_alias=AliasChoices("gcp_project_id", "google_cloud_project"),
    )
    firestore_project_id: str | None = Field(
        default=None,
        description="Firestore project id (falls back to gcp_project_id) / Firestore のプロジェクトID",
    )
    firestore_emulator_host: str | None = Field(
        default=None,
        description="Firestore emulator host:port / Firestore エミュレータの接続先",
    )
    contents_collection: str = Field(
        default="contents",
        description="Firestore collection holding content items / コンテンツを保存するコレクション名",
    )

    # --- Library query / actions ---
    default_page_size: int = Field(
        default=20,
        ge=1,
        description="Default page size for the library list / 一覧の既定ページサイズ",
    )
    max_page_size: int = Field(
        default=100,
        ge=1,
        description="Upper bound for the library page size / 一覧ページサイズの上限",
    )
    bulk_action_max_items: int = Field(
        default=450,
        ge=1,
        description=(
            "Max ids per bulk action; stays below Firestore's 500 writes per batch / "
            "一括操作1回あたりの最大件数（Firestore バッチ上限 500 未満）"
        ),
    )
    import_max_items: int = Field(
        default=200,
        ge=1,
        description="Max items created by a single text import / 一括インポート1回の最大件数",
    )

    # --- HTTP ---
    allowed_cors_origins: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(),
        description=(
            "Comma separated CORS origins / CORS で許可するオリジンのカンマ区切り一覧"
        ),
        validation_alias=AliasChoices("allowed_cors_origins", "cors_allowed_origins"),
    )
    sentry_dsn: str | None = Field(
        default=None, description="Sentry DSN (enable if set)"
    )

    # Pydantic v2 settings config
    # - env_file: .env を読み込む
    # - extra: .env に存在する未使用キーを無視
    # - case_sensitive: 環境変数キーの大小文字を区別しない
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("session_secret_key", mode="after")
    @classmethod
    def _validate_session_secret(
        cls, value: str
    ) -> str:
        """Ensure session secret keys are safely randomised before accepting them.

        なぜ: 署名鍵が既知のプレースホルダーや短い文字列のままだと、他人の
        所有者IDを名乗るセッションを偽造できてしまうため、読み込み段階で拒否する。
        """

        secret = (value or "").strip()
        if not secret:
            raise ValueError(
                "SESSION_SECRET_KEY must be a non-empty random string",
            )

        if secret.casefold() in _PLACEHOLDER_SESSION_SECRETS:
            raise ValueError(
                "SESSION_SECRET_KEY must not use placeholder values like 'change-me'",
            )

        if len(secret) < _MIN_SESSION_SECRET_KEY_LENGTH:
            raise ValueError(
                "SESSION_SECRET_KEY must be at least 32 characters long",
            )

        return secret

    @field_validator("allowed_cors_origins", mode="before")
    @classmethod
    def _normalise_allowed_cors_origins(
        cls, raw_origins: object
    ) -> tuple[str, ...] | object:  # pragma: no cover - pydantic handles typing
        """Convert environment input into a deduplicated tuple of origins."""

        if raw_origins is None:
            candidates: list[str] = []
        elif isinstance(raw_origins, str):
            candidates = raw_origins.split(",")
        else:
            try:
                candidates = list(raw_origins)
            except TypeError:
                return raw_origins

        normalised: list[str] = []
        seen: set[str] = set()
        for candidate in candidates:
            if not isinstance(candidate, str):
                continue
            trimmed = candidate.strip()
            if not trimmed or trimmed in seen:
                continue
            seen.add(trimmed)
            normalised.append(trimmed)

        return tuple(normalised)

    @model_validator(mode="after")
    def _apply_environment_sensitive_defaults(self) -> "Settings":
        """Harmonise environment defaults without overriding explicit choices.

        ENVIRONMENT=production のときだけ Secure 属性を既定で有効化し、
        最大ページサイズが既定ページサイズを下回る設定は既定側を切り詰める。
        """

        environment_name = (self.environment or "").lower()
        is_secure_explicitly_configured = "session_cookie_secure" in self.model_fields_set
        if environment_name == "production" and not is_secure_explicitly_configured:
            self.session_cookie_secure = True

        if self.default_page_size > self.max_page_size:
            self.default_page_size = self.max_page_size

        return self


settings = Settings()
