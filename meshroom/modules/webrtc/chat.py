"""채팅 데이터 채널 모듈.

PeerLink마다 하나씩 존재하는 best-effort 텍스트 채널과,
수신/송신 메시지를 기록하는 채팅 로그를 제공합니다.
채널이 열려 있지 않으면 메시지는 그 피어에 대해 버려집니다 (큐잉/재시도 없음).
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, List, Optional

from aiortc import RTCDataChannel

from ..shared.errors import ChannelUnavailable

logger = logging.getLogger(__name__)


@dataclass
class ChatMessage:
    """수신 채팅 메시지.

    Attributes:
        sender (str): 보낸 참가자 ID ("me"는 로컬 송신)
        text (str): 메시지 본문
        timestamp (float): 수신 시각 (epoch seconds)
    """
    sender: str
    text: str
    timestamp: float = field(default_factory=time.time)

    def format(self) -> str:
        return f"[{self.sender}] {self.text}"


class ChatLog:
    """애플리케이션에 보여줄 채팅 로그.

    채팅 줄은 ``"[<sender>] <text>"`` 형식으로, 시스템 알림은 그대로 기록합니다.
    구독자는 새 줄이 추가될 때마다 호출됩니다.
    """

    def __init__(self, maxlen: int = 500):
        self.lines: Deque[str] = deque(maxlen=maxlen)
        self._listeners: List[Callable[[str], None]] = []

    def subscribe(self, listener: Callable[[str], None]) -> None:
        self._listeners.append(listener)

    def record(self, message: ChatMessage) -> str:
        return self._append(message.format())

    def system(self, text: str) -> str:
        return self._append(text)

    def _append(self, line: str) -> str:
        self.lines.append(line)
        for listener in self._listeners:
            try:
                listener(line)
            except Exception as e:
                logger.error(f"[Chat] 채팅 로그 구독자 오류: {e}")
        return line


class ChatChannel:
    """원격 참가자 한 명과의 채팅 데이터 채널.

    initiator는 직접 만든 채널을, responder는 ``datachannel`` 이벤트로 받은
    채널을 bind()로 연결합니다.

    Attributes:
        remote_id (str): 원격 참가자 ID
        channel (Optional[RTCDataChannel]): 바인딩된 aiortc 데이터 채널
    """

    def __init__(self, remote_id: str, on_message: Callable[[ChatMessage], None]):
        self.remote_id = remote_id
        self.channel: Optional[RTCDataChannel] = None
        self._on_message = on_message

    @property
    def is_open(self) -> bool:
        return self.channel is not None and self.channel.readyState == "open"

    def bind(self, channel: RTCDataChannel) -> None:
        """데이터 채널을 바인딩하고 이벤트 핸들러를 등록합니다."""
        self.channel = channel

        @channel.on("open")
        def on_open():
            logger.info(f"[Chat] 데이터 채널 open: {self.remote_id}")

        @channel.on("message")
        def on_message(data):
            if channel is not self.channel:
                return
            text = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else str(data)
            self._on_message(ChatMessage(sender=self.remote_id, text=text))

        @channel.on("close")
        def on_close():
            logger.info(f"[Chat] 데이터 채널 close: {self.remote_id}")

    def send(self, text: str) -> bool:
        """메시지를 보냅니다. 채널이 열려 있지 않으면 버리고 False를 반환합니다."""
        try:
            self._ensure_open()
        except ChannelUnavailable as e:
            logger.debug(f"[Chat] 메시지 드롭: {e}")
            return False
        self.channel.send(text)
        return True

    def close(self) -> None:
        if self.channel is not None and self.channel.readyState != "closed":
            self.channel.close()
        self.channel = None

    def _ensure_open(self) -> None:
        if not self.is_open:
            state = self.channel.readyState if self.channel is not None else "unbound"
            raise ChannelUnavailable(f"chat channel to {self.remote_id} is {state}")
