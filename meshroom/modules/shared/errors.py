"""meshroom 예외 분류.

릴레이와 클라이언트가 공통으로 사용하는 예외 계층입니다.
각 예외는 전파 정책이 다르므로 호출 측에서 클래스별로 처리합니다.

Classes:
    MeshError: 모든 meshroom 예외의 기본 클래스
    InvalidRequest: 잘못된 join/signal 요청 (드롭 후 로그)
    UnknownDestination: 이미 연결이 끊긴 참가자에게 보낸 signal (조용히 드롭)
    MediaError: 로컬 캡처 실패 (세션 치명적)
    NegotiationFailure: 피어 연결 협상 실패 (해당 PeerLink만 종료)
    ChannelUnavailable: 열리지 않은 채널로 채팅 전송 (조용히 드롭)
"""


class MeshError(Exception):
    """meshroom 예외의 기본 클래스."""


class InvalidRequest(MeshError):
    """형식이 잘못되었거나 정책상 거부된 요청."""


class UnknownDestination(MeshError):
    """signal 대상 참가자가 더 이상 존재하지 않음.

    피어가 먼저 연결을 끊은 경우 발생하는 정상적인 경합입니다.
    송신 측은 곧 peer-left 알림을 받아 정리합니다.
    """

    def __init__(self, participant_id: str):
        super().__init__(f"unknown destination: {participant_id}")
        self.participant_id = participant_id


class MediaError(MeshError):
    """로컬 캡처 장치 관련 오류의 기본 클래스."""


class MediaAccessDenied(MediaError):
    """캡처 장치 접근 권한이 거부됨."""


class MediaDeviceUnavailable(MediaError):
    """캡처 장치가 없거나 다른 프로세스가 사용 중."""


class NegotiationFailure(MeshError):
    """offer/answer 적용이 거부되었거나 연결이 실패함."""

    def __init__(self, remote_id: str, reason: str):
        super().__init__(f"negotiation with {remote_id} failed: {reason}")
        self.remote_id = remote_id
        self.reason = reason


class ChannelUnavailable(MeshError):
    """데이터 채널이 open 상태가 아님."""
