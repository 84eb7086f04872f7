"""meshroom: 룸 기반 풀 메시 WebRTC 화상 채팅.

시그널링 릴레이 서버(FastAPI)와 헤드리스 참가자 클라이언트(aiortc)를 제공합니다.
"""

__version__ = "0.1.0"
