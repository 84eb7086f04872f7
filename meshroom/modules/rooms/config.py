"""릴레이 서버 설정.

룸 정책, 서버 바인딩, CORS, 로그 보관 등 시그널링 서버 설정값.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import List

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# .env 파일 로드
_env_path = Path(__file__).parent.parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)

ROOM_SWITCH_POLICIES = ("reject", "switch")


class RelaySettings(BaseSettings):
    """릴레이 서버 설정 클래스.

    환경 변수를 Python 객체로 매핑하고 유효성을 검증합니다.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # 서버 바인딩
    HOST: str = Field(default="0.0.0.0", description="바인딩 주소")
    PORT: int = Field(default=8000, description="바인딩 포트")

    # 룸 정책
    ROOM_SWITCH_POLICY: str = Field(
        default="reject",
        description="다른 룸에 있는 참가자가 join할 때의 정책 (reject | switch)"
    )
    MAX_PEERS_PER_ROOM: int = Field(
        default=16,
        ge=0,
        description="룸당 최대 참가자 수 (0이면 무제한)"
    )

    # CORS
    CORS_ORIGINS: str = Field(
        default="*",
        description="쉼표로 구분된 허용 origin 목록"
    )

    # 로깅 설정
    LOG_LEVEL: str = Field(default="INFO", description="로그 레벨")
    LOG_DIR: str = Field(default="logs", description="로그 파일 디렉토리")
    LOG_RETENTION_DAYS: int = Field(default=60, description="로그 보관 기간 (일)")

    @field_validator("ROOM_SWITCH_POLICY")
    @classmethod
    def validate_switch_policy(cls, v: str) -> str:
        """룸 전환 정책 유효성 검증"""
        if v.lower() not in ROOM_SWITCH_POLICIES:
            raise ValueError(f"ROOM_SWITCH_POLICY는 {ROOM_SWITCH_POLICIES} 중 하나여야 합니다.")
        return v.lower()

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """로그 레벨 유효성 검증"""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL은 {allowed} 중 하나여야 합니다.")
        return v.upper()

    @property
    def cors_origin_list(self) -> List[str]:
        """CORS 허용 origin 리스트."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_relay_settings() -> RelaySettings:
    """설정 싱글톤 인스턴스 반환.

    Returns:
        RelaySettings: 설정 객체
    """
    settings = RelaySettings()
    logger.info(f"[Relay Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
    logger.info(f"[Relay Config] 룸 전환 정책: {settings.ROOM_SWITCH_POLICY}, "
                f"룸당 최대 인원: {settings.MAX_PEERS_PER_ROOM or '무제한'}")
    return settings
