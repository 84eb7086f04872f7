"""룸 모듈 (서버 측).

룸 멤버십 레지스트리와 시그널 릴레이를 제공합니다.

Classes:
    RoomRegistry: 룸 ID → 참가자 집합 관리
    Participant: 전송 연결 단위 참가자 데이터 클래스
    JoinResult: join 결과
    SignalRelay: join/leave 팬아웃 및 signal 전달

Config:
    RelaySettings, get_relay_settings: 릴레이 서버 설정
"""

from .registry import RoomRegistry, Participant, JoinResult
from .relay import SignalRelay
from .config import RelaySettings, get_relay_settings

__all__ = [
    "RoomRegistry",
    "Participant",
    "JoinResult",
    "SignalRelay",
    "RelaySettings",
    "get_relay_settings",
]
