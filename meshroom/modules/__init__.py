"""meshroom modules package.

Modules:
    shared: 와이어 메시지 모델과 예외 분류
    rooms: 룸 레지스트리와 시그널 릴레이 (서버)
    webrtc: 풀 메시 피어 연결과 로컬 미디어 (클라이언트)
"""
