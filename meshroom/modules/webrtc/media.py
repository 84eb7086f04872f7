"""로컬 미디어 세션 모듈.

캡처 스트림을 보유하고, 모든 PeerLink에 공유 자원으로 제공합니다.
음소거/비디오 끄기는 트랙 교체 없이 프레임 내용만 바꾸므로
어떤 PeerLink도 재협상하지 않습니다.

주요 기능:
    - 캡처 제공자(장치 또는 합성 트랙)로부터 트랙 획득
    - PeerLink별 구독 트랙 발급/회수 (MediaRelay 기반 참조 카운트)
    - 종류별(audio/video) 활성화 토글
    - 퇴장 시 모든 트랙 정지

Classes:
    CaptureProvider: 캡처 제공자 프로토콜
    DeviceCaptureProvider: aiortc MediaPlayer 기반 장치/파일 캡처
    SyntheticCaptureProvider: 무음/테스트 패턴 트랙 (헤드리스 참가자용)
    LocalMediaSession: 공유 로컬 미디어 세션
"""

import logging
from typing import Dict, List, Optional, Protocol

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer, MediaRelay
from aiortc.mediastreams import AudioStreamTrack, VideoStreamTrack
from av.error import FFmpegError

from .tracks import ToggleableTrack
from ..shared.errors import MediaAccessDenied, MediaDeviceUnavailable

logger = logging.getLogger(__name__)

MEDIA_KINDS = ("audio", "video")


class CaptureProvider(Protocol):
    """캡처 장치 제공자 프로토콜.

    구현체는 오디오/비디오 트랙 리스트를 반환하거나
    MediaAccessDenied / MediaDeviceUnavailable을 발생시켜야 합니다.
    """

    async def open(self) -> List[MediaStreamTrack]:
        ...


class SyntheticCaptureProvider:
    """무음 오디오와 테스트 패턴 비디오를 만드는 캡처 제공자."""

    def __init__(self, audio: bool = True, video: bool = True):
        self.audio = audio
        self.video = video

    async def open(self) -> List[MediaStreamTrack]:
        tracks: List[MediaStreamTrack] = []
        if self.audio:
            tracks.append(AudioStreamTrack())
        if self.video:
            tracks.append(VideoStreamTrack())
        return tracks


class DeviceCaptureProvider:
    """aiortc MediaPlayer로 캡처 장치(또는 미디어 파일)를 여는 제공자.

    Examples:
        >>> DeviceCaptureProvider("/dev/video0", format="v4l2")
        >>> DeviceCaptureProvider("default:none", format="avfoundation")
    """

    def __init__(self, device: str, format: Optional[str] = None, options: Optional[dict] = None):
        self.device = device
        self.format = format
        self.options = options or {}
        self.player: Optional[MediaPlayer] = None

    async def open(self) -> List[MediaStreamTrack]:
        """장치를 열고 트랙을 반환합니다.

        Raises:
            MediaAccessDenied: 장치 접근 권한이 없는 경우
            MediaDeviceUnavailable: 장치가 없거나 사용 중이거나 트랙이 없는 경우
        """
        try:
            self.player = MediaPlayer(self.device, format=self.format, options=self.options)
        except PermissionError as e:
            raise MediaAccessDenied(f"permission denied for capture device {self.device}") from e
        except (OSError, FFmpegError) as e:
            raise MediaDeviceUnavailable(f"capture device {self.device} unavailable: {e}") from e

        tracks = [track for track in (self.player.audio, self.player.video) if track is not None]
        if not tracks:
            raise MediaDeviceUnavailable(f"capture device {self.device} has no audio or video")
        return tracks


class LocalMediaSession:
    """모든 PeerLink가 공유하는 로컬 미디어 세션.

    원본 캡처 트랙은 세션이 하나만 보유하고, 각 PeerLink에는
    MediaRelay 구독을 감싼 ToggleableTrack을 발급합니다.
    발급된 트랙 수가 곧 참조 카운트입니다.

    Attributes:
        provider (CaptureProvider): 캡처 제공자
        tracks (List[MediaStreamTrack]): 원본 캡처 트랙
        enabled (Dict[str, bool]): 종류별 활성화 상태
        relay (MediaRelay): 원본 트랙을 여러 소비자에게 나누는 릴레이

    Lifecycle:
        1. start(): 캡처 트랙 획득 (실패 시 MediaError, 시그널링 전에 발생)
        2. acquire()/release(): PeerLink 생성/종료 시 구독 트랙 발급/회수
        3. set_enabled()/toggle(): 음소거/비디오 끄기 (재협상 없음)
        4. stop(): 퇴장 시 모든 트랙 정지
    """

    def __init__(self, provider: Optional[CaptureProvider] = None):
        self.provider = provider or SyntheticCaptureProvider()
        self.tracks: List[MediaStreamTrack] = []
        self.enabled: Dict[str, bool] = {kind: True for kind in MEDIA_KINDS}
        self.relay = MediaRelay()
        # owner_id (remote participant) -> issued tracks
        self._subscriptions: Dict[str, List[ToggleableTrack]] = {}

    @property
    def started(self) -> bool:
        return bool(self.tracks)

    @property
    def ref_count(self) -> int:
        """현재 트랙을 구독 중인 PeerLink 수."""
        return len(self._subscriptions)

    async def start(self) -> "LocalMediaSession":
        """캡처 트랙을 획득합니다. 이미 시작했으면 아무 작업도 하지 않습니다.

        Raises:
            MediaAccessDenied, MediaDeviceUnavailable: 캡처 실패
        """
        if self.started:
            return self
        self.tracks = list(await self.provider.open())
        kinds = ", ".join(track.kind for track in self.tracks) or "없음"
        logger.info(f"[Media] 로컬 미디어 시작: 트랙={kinds}")
        return self

    def acquire(self, owner_id: str) -> List[MediaStreamTrack]:
        """PeerLink용 구독 트랙을 발급합니다.

        같은 owner에게 이미 발급했다면 기존 트랙을 반환합니다.
        """
        if owner_id in self._subscriptions:
            return list(self._subscriptions[owner_id])

        issued = [
            ToggleableTrack(self.relay.subscribe(track), track.kind, self._enabled_getter(track.kind))
            for track in self.tracks
        ]
        self._subscriptions[owner_id] = issued
        logger.debug(f"[Media] 트랙 {len(issued)}개 발급 → {owner_id} (참조 {self.ref_count})")
        return list(issued)

    def release(self, owner_id: str) -> None:
        """PeerLink에 발급한 트랙을 회수하고 정지합니다."""
        for track in self._subscriptions.pop(owner_id, []):
            track.stop()

    def set_enabled(self, kind: str, enabled: bool) -> None:
        """종류별 트랙 활성화 상태를 설정합니다.

        모든 PeerLink에 즉시 반영되며 재협상은 발생하지 않습니다.

        Raises:
            ValueError: kind가 audio/video가 아닌 경우
        """
        if kind not in MEDIA_KINDS:
            raise ValueError(f"unknown media kind: {kind}")
        self.enabled[kind] = enabled
        logger.info(f"[Media] {kind} {'활성화' if enabled else '비활성화'}")

    def toggle(self, kind: str) -> bool:
        """활성화 상태를 뒤집고 새 상태를 반환합니다."""
        self.set_enabled(kind, not self.is_enabled(kind))
        return self.enabled[kind]

    def is_enabled(self, kind: str) -> bool:
        return self.enabled.get(kind, False)

    def stop(self) -> None:
        """모든 구독과 원본 트랙을 정지합니다."""
        for owner_id in list(self._subscriptions.keys()):
            self.release(owner_id)
        for track in self.tracks:
            track.stop()
        self.tracks = []
        self.enabled = {kind: True for kind in MEDIA_KINDS}
        logger.info("[Media] 로컬 미디어 정지")

    def _enabled_getter(self, kind: str):
        return lambda: self.is_enabled(kind)
