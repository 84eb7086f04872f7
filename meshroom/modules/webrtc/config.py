"""WebRTC 모듈 설정.

TURN/STUN 서버, 시그널링 주소, 캡처 장치 등 클라이언트 측 WebRTC 관련
상수와 환경변수 기반 설정.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from aiortc import RTCConfiguration, RTCIceServer

# 환경변수 로드 (상위에서 이미 로드됨)
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


def _parse_bool(value: Optional[str], default: bool = True) -> bool:
    """문자열을 bool로 변환."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


# ============================================================
# ICE Server 설정
# ============================================================

@dataclass(frozen=True)
class ICEServerConfig:
    """ICE 서버 설정."""

    # TURN 서버
    TURN_SERVER_URL: Optional[str] = os.getenv("TURN_SERVER_URL")
    TURN_USERNAME: Optional[str] = os.getenv("TURN_USERNAME")
    TURN_CREDENTIAL: Optional[str] = os.getenv("TURN_CREDENTIAL")

    # STUN 서버
    STUN_SERVER_URL: Optional[str] = os.getenv("STUN_SERVER_URL")

    # 기본 공개 STUN 서버 (fallback)
    DEFAULT_STUN_SERVERS: tuple = (
        "stun:stun.l.google.com:19302",
        "stun:stun1.l.google.com:19302",
    )

    @property
    def has_turn_server(self) -> bool:
        """TURN 서버 설정 완료 여부."""
        return all([self.TURN_SERVER_URL, self.TURN_USERNAME, self.TURN_CREDENTIAL])

    def ice_servers(self) -> List[Dict[str, str]]:
        """브라우저 RTCPeerConnection 형식의 ICE 서버 리스트.

        Returns:
            list: ``[{"urls": ...}, {"urls": ..., "username": ..., "credential": ...}]``
        """
        servers: List[Dict[str, str]] = []

        # STUN 서버 추가 (커스텀 설정)
        if self.STUN_SERVER_URL:
            servers.append({"urls": self.STUN_SERVER_URL})

        # Google STUN 서버 (fallback)
        for stun_url in self.DEFAULT_STUN_SERVERS:
            servers.append({"urls": stun_url})

        # TURN 서버 추가 (설정된 경우만)
        if self.has_turn_server:
            servers.append({
                "urls": self.TURN_SERVER_URL,
                "username": self.TURN_USERNAME,
                "credential": self.TURN_CREDENTIAL,
            })
        return servers


def build_rtc_configuration(ice_servers: Sequence[Dict[str, str]]) -> RTCConfiguration:
    """ICE 서버 딕셔너리 리스트를 aiortc RTCConfiguration으로 변환합니다.

    코어는 서버 목록을 해석하지 않고 그대로 전달합니다.
    """
    servers = []
    for server in ice_servers:
        urls = server["urls"]
        servers.append(RTCIceServer(
            urls=list(urls) if isinstance(urls, (list, tuple)) else [urls],
            username=server.get("username"),
            credential=server.get("credential"),
        ))
    # aiortc doesn't support iceTransportPolicy parameter
    return RTCConfiguration(iceServers=servers)


# ============================================================
# 클라이언트 연결 설정
# ============================================================

@dataclass
class ConnectionConfig:
    """시그널링 및 피어 연결 관련 설정."""

    # 시그널링 서버 WebSocket 주소
    SIGNALING_URL: str = field(
        default_factory=lambda: os.getenv("SIGNALING_URL", "ws://localhost:8000/ws")
    )

    # 채팅 데이터 채널
    CHAT_LABEL: str = "chat"
    CHAT_ORDERED: bool = field(
        default_factory=lambda: _parse_bool(os.getenv("CHAT_ORDERED"), True)
    )

    # 캡처 장치 (비어 있으면 합성 트랙 사용)
    CAPTURE_DEVICE: Optional[str] = field(
        default_factory=lambda: os.getenv("CAPTURE_DEVICE") or None
    )
    CAPTURE_FORMAT: Optional[str] = field(
        default_factory=lambda: os.getenv("CAPTURE_FORMAT") or None
    )

    # 피어 연결 종료 대기 시간 (초)
    CLOSE_TIMEOUT: float = field(
        default_factory=lambda: float(os.getenv("CLOSE_TIMEOUT", "5.0"))
    )

    # 채팅 로그 보관 줄 수
    CHAT_LOG_SIZE: int = 500


# ============================================================
# 싱글톤 인스턴스
# ============================================================

ice_config = ICEServerConfig()
connection_config = ConnectionConfig()


# ============================================================
# 설정 로드 확인 로그
# ============================================================

logger.info(f"[WebRTC Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
logger.info(f"[WebRTC Config] TURN 서버 설정 완료: {ice_config.has_turn_server}")
if ice_config.STUN_SERVER_URL:
    logger.info(f"[WebRTC Config] STUN URL: {ice_config.STUN_SERVER_URL}")
else:
    logger.info("[WebRTC Config] STUN URL: 기본 Google STUN 사용")
logger.info(f"[WebRTC Config] 시그널링 URL: {connection_config.SIGNALING_URL}")
