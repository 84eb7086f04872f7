"""로컬 미디어 트랙 래퍼 모듈.

캡처 트랙을 각 피어 연결에 전달하면서, 로컬 음소거/비디오 끄기 상태에 따라
무음 또는 검은 프레임으로 바꿔 보내는 트랙을 제공합니다.
"""

import logging
from typing import Callable

import numpy as np
from aiortc import MediaStreamTrack
from av import AudioFrame, VideoFrame

logger = logging.getLogger(__name__)


def silence_like(frame: AudioFrame) -> AudioFrame:
    """같은 포맷/길이의 무음 프레임을 생성합니다."""
    silent = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
    for plane in silent.planes:
        plane.update(bytes(plane.buffer_size))
    silent.pts = frame.pts
    silent.sample_rate = frame.sample_rate
    silent.time_base = frame.time_base
    return silent


def black_like(frame: VideoFrame) -> VideoFrame:
    """같은 해상도의 검은 프레임을 생성합니다."""
    black = VideoFrame.from_ndarray(
        np.zeros((frame.height, frame.width, 3), dtype=np.uint8), format="bgr24"
    )
    black.pts = frame.pts
    black.time_base = frame.time_base
    return black


class ToggleableTrack(MediaStreamTrack):
    """활성화 상태에 따라 프레임을 그대로 또는 무음/검은 화면으로 내보내는 트랙.

    트랙을 교체하지 않고 프레임 내용만 바꾸므로 음소거 전환 시
    재협상이 필요 없습니다. 비활성 상태에서도 원본 트랙은 계속 소비하여
    타임스탬프가 끊기지 않게 합니다.

    Attributes:
        kind (str): 트랙 종류 ("audio" | "video")
        track (MediaStreamTrack): 원본 트랙 (보통 MediaRelay 구독)
        is_enabled (Callable[[], bool]): 현재 활성화 여부를 반환하는 함수

    Examples:
        >>> source = relay.subscribe(microphone)
        >>> track = ToggleableTrack(source, "audio", lambda: session.is_enabled("audio"))
        >>> pc.addTrack(track)
    """

    def __init__(self, track: MediaStreamTrack, kind: str, is_enabled: Callable[[], bool]):
        super().__init__()
        self.kind = kind
        self.track = track
        self.is_enabled = is_enabled

    async def recv(self):
        """원본 프레임을 받아 활성 상태면 그대로, 아니면 빈 프레임으로 반환합니다."""
        frame = await self.track.recv()
        if self.is_enabled():
            return frame

        if self.kind == "audio":
            return silence_like(frame)
        return black_like(frame)

    def stop(self):
        super().stop()
        self.track.stop()
