"""렌더링 표면 인터페이스.

협상 코어가 화면 요소를 직접 만들거나 지우지 않도록, 원격 스트림 표시를
attach/detach 호출로 추상화합니다. 실제 렌더링은 외부 협력자가 담당합니다.
"""

import asyncio
import logging
from typing import Dict, Protocol

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaBlackhole

logger = logging.getLogger(__name__)


class RenderingSurface(Protocol):
    """원격 참가자 스트림을 표시하는 외부 협력자."""

    def attach(self, participant_id: str, track: MediaStreamTrack) -> None:
        ...

    def detach(self, participant_id: str) -> None:
        ...


class BlackholeSurface:
    """원격 트랙을 소비만 하고 버리는 헤드리스 렌더링 표면.

    aiortc는 수신 트랙을 누군가 recv()하지 않으면 버퍼가 쌓이므로,
    화면이 없는 참가자는 이 표면으로 트랙을 소비합니다.
    """

    def __init__(self):
        # participant_id -> MediaBlackhole
        self.sinks: Dict[str, MediaBlackhole] = {}

    def attach(self, participant_id: str, track: MediaStreamTrack) -> None:
        sink = self.sinks.get(participant_id)
        if sink is None:
            sink = MediaBlackhole()
            self.sinks[participant_id] = sink
        sink.addTrack(track)
        asyncio.ensure_future(sink.start())
        logger.info(f"[Surface] {participant_id} {track.kind} 트랙 연결")

    def detach(self, participant_id: str) -> None:
        sink = self.sinks.pop(participant_id, None)
        if sink is not None:
            asyncio.ensure_future(sink.stop())
            logger.info(f"[Surface] {participant_id} 표시 해제")
