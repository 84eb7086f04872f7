"""WebRTC 모듈 (클라이언트 측).

풀 메시 피어 연결, 로컬 미디어, 채팅 데이터 채널을 제공합니다.

Classes:
    MeshSession: 시그널링 연결 + 피어 연결 관리 세션
    PeerConnectionManager: 원격 참가자별 PeerLink 관리
    PeerLink: 원격 참가자 한 명과의 연결 상태 머신
    LocalMediaSession: 공유 로컬 미디어 세션
    ToggleableTrack: 음소거/비디오 끄기 트랙 래퍼
    ChatChannel, ChatLog, ChatMessage: 채팅 채널과 로그
    BlackholeSurface: 헤드리스 렌더링 표면

Config:
    ice_config: ICE 서버 설정
    connection_config: 시그널링/연결 설정
"""

from .tracks import ToggleableTrack
from .media import (
    LocalMediaSession,
    CaptureProvider,
    DeviceCaptureProvider,
    SyntheticCaptureProvider,
)
from .chat import ChatChannel, ChatLog, ChatMessage
from .surface import RenderingSurface, BlackholeSurface
from .peer_link import PeerLink, LinkState, LinkRole, is_designated_initiator
from .peer_manager import PeerConnectionManager
from .session import MeshSession
from .config import (
    ice_config,
    connection_config,
    ICEServerConfig,
    ConnectionConfig,
    build_rtc_configuration,
)

__all__ = [
    # Classes
    "ToggleableTrack",
    "LocalMediaSession",
    "CaptureProvider",
    "DeviceCaptureProvider",
    "SyntheticCaptureProvider",
    "ChatChannel",
    "ChatLog",
    "ChatMessage",
    "RenderingSurface",
    "BlackholeSurface",
    "PeerLink",
    "LinkState",
    "LinkRole",
    "is_designated_initiator",
    "PeerConnectionManager",
    "MeshSession",
    # Config
    "ice_config",
    "connection_config",
    "ICEServerConfig",
    "ConnectionConfig",
    "build_rtc_configuration",
]
