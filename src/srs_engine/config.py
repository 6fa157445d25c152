from __future__ import annotations

from datetime import UTC, tzinfo
from typing import Annotated, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources.types import NoDecode


DEFAULT_DB_PATH = ".data/srs.sqlite3"
DEFAULT_LEARNING_STEPS: tuple[int, ...] = (1, 10, 60, 1440)

LeechAction = Literal["tag", "suspend"]
StoreBackend = Literal["memory", "sqlite", "firestore"]


def _split_steps(raw: object) -> object:
    """Accept ``"1,10,60"`` style environment strings as step tuples."""

    if isinstance(raw, str):
        return tuple(part.strip() for part in raw.split(",") if part.strip())
    return raw


def _check_steps(steps: tuple[int, ...]) -> tuple[int, ...]:
    if not steps:
        raise ValueError("step list must not be empty")
    if any(step <= 0 for step in steps):
        raise ValueError("steps must be positive minute offsets")
    if any(later <= earlier for earlier, later in zip(steps, steps[1:])):
        raise ValueError("steps must be strictly ascending")
    return steps


def resolve_timezone(name: str) -> tzinfo:
    """Return the tzinfo for an IANA name; ``UTC`` never touches the tz database."""

    if name.strip().upper() == "UTC":
        return UTC
    return ZoneInfo(name)


class SchedulerConfig(BaseModel):
    """Immutable scheduling constants injected into ``Scheduler`` at construction.

    学習ステップ・卒業間隔・Ease 補正・リーチ閾値などの定数をまとめた不変値。
    デプロイ毎の調整やテストでの差し替えを、共有された可変デフォルトなしで行える。
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    learning_steps: tuple[int, ...] = Field(
        default=DEFAULT_LEARNING_STEPS,
        description="Learning steps in minutes / 学習ステップ（分）",
    )
    relearning_delay: int | None = Field(
        default=None,
        ge=1,
        description="Minutes before a lapsed card returns; None uses the first learning step / 失念後の再出題までの分数",
    )
    graduating_interval: int = Field(
        default=1, ge=1, description="Days when graduating with a normal grade / 通常卒業時の間隔（日）"
    )
    easy_interval: int = Field(
        default=4, ge=1, description="Days when graduating with a perfect grade / 即答卒業時の間隔（日）"
    )
    starting_ease: float = Field(default=2.5, description="Initial ease factor / 初期 Ease")
    minimum_ease: float = Field(default=1.3, gt=0, description="Ease floor / Ease の下限")
    easy_bonus: float = Field(default=1.3, gt=1, description="Multiplier for easy reviews / Easy 時の追加倍率")
    hard_interval_modifier: float = Field(
        default=1.2, gt=1, description="Multiplier for hard reviews / Hard 時の間隔倍率"
    )
    lapse_ease_penalty: float = Field(
        default=0.2, ge=0, description="Ease decrease applied on every failure / 失敗時の Ease 減算"
    )
    leech_threshold: int = Field(default=8, ge=1, description="Lapses before a card is a leech / リーチ判定の失念回数")
    leech_action: LeechAction = Field(default="tag", description="tag | suspend")
    leech_tag: str = Field(default="leech", min_length=1)
    timezone: str = Field(default="UTC", description="Day boundary timezone for forecasts / 予測の日付境界")

    @field_validator("learning_steps", mode="before")
    @classmethod
    def _parse_steps(cls, raw: object) -> object:
        return _split_steps(raw)

    @field_validator("learning_steps")
    @classmethod
    def _validate_steps(cls, steps: tuple[int, ...]) -> tuple[int, ...]:
        return _check_steps(steps)

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            resolve_timezone(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {value!r}") from exc
        return value

    @model_validator(mode="after")
    def _validate_ease_bounds(self) -> "SchedulerConfig":
        if self.starting_ease < self.minimum_ease:
            raise ValueError("starting_ease must not be below minimum_ease")
        return self

    @property
    def relearning_delay_minutes(self) -> int:
        if self.relearning_delay is not None:
            return self.relearning_delay
        return self.learning_steps[0]

    @property
    def tzinfo(self) -> tzinfo:
        return resolve_timezone(self.timezone)


class Settings(BaseSettings):
    """Deployment settings loaded from environment variables.

    環境変数（および .env）から読み込むデプロイ設定。
    - store_backend: カードストアの種類（memory/sqlite/firestore）
    - 各スケジューリング定数は scheduler_config() で不変の SchedulerConfig に変換する
    """

    environment: str = Field(default="development", description="Runtime environment / 実行環境")
    log_level: str = Field(default="INFO", description="Root log level / ログレベル")

    # --- カードストア ---
    store_backend: StoreBackend = Field(default="sqlite", description="memory | sqlite | firestore")
    srs_db_path: str = Field(default=DEFAULT_DB_PATH, description="Path to SRS SQLite database / SRS用SQLite DBパス")
    firestore_project_id: str | None = Field(default=None, description="Firestore project id")
    firestore_emulator_host: str | None = Field(default=None, description="Firestore emulator host:port")
    firestore_collection: str = Field(default="srs_cards", description="Firestore collection for cards")

    # --- 取得件数の既定値 ---
    default_due_limit: int = Field(default=50, ge=0, description="Default due-card limit / 期限到来カードの既定件数")
    default_new_limit: int = Field(default=20, ge=0, description="Default new-card limit / 新規カードの既定件数")
    default_forecast_days: int = Field(default=7, ge=1, description="Default forecast length / 予測日数の既定値")
    max_forecast_days: int = Field(default=365, ge=1, description="Upper bound for forecast days / 予測日数の上限")

    # --- スケジューリング定数（SchedulerConfig へ受け渡し） ---
    learning_steps: Annotated[tuple[int, ...], NoDecode] = Field(default=DEFAULT_LEARNING_STEPS)
    relearning_delay: int | None = None
    graduating_interval: int = 1
    easy_interval: int = 4
    starting_ease: float = 2.5
    minimum_ease: float = 1.3
    easy_bonus: float = 1.3
    hard_interval_modifier: float = 1.2
    lapse_ease_penalty: float = 0.2
    leech_threshold: int = 8
    leech_action: LeechAction = "tag"
    leech_tag: str = "leech"
    timezone: str = "UTC"

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("learning_steps", mode="before")
    @classmethod
    def _parse_steps(cls, raw: object) -> object:
        return _split_steps(raw)

    def scheduler_config(self) -> SchedulerConfig:
        """Build the immutable scheduling configuration from these settings."""

        return SchedulerConfig(
            **{name: getattr(self, name) for name in SchedulerConfig.model_fields}
        )


settings = Settings()
