"""헤드리스 참가자 CLI.

룸에 입장해 다른 참가자들과 풀 메시로 연결하고, 채팅을 터미널로 주고받습니다.

사용법:
    meshroom-client --room R1 --name Alice
    meshroom-client --room R1 --name Bob --device /dev/video0 --format v4l2

입력 명령:
    /mute   오디오 켜기/끄기
    /video  비디오 켜기/끄기
    /peers  연결된 참가자 목록
    /leave  퇴장 후 종료
    그 외   채팅 메시지로 전송
"""

import argparse
import asyncio
import logging
import sys

from meshroom.modules.shared.errors import MediaError
from meshroom.modules.webrtc import (
    DeviceCaptureProvider,
    LocalMediaSession,
    MeshSession,
    SyntheticCaptureProvider,
    connection_config,
)

logger = logging.getLogger(__name__)


def build_media(args: argparse.Namespace) -> LocalMediaSession:
    device = args.device or connection_config.CAPTURE_DEVICE
    if device:
        provider = DeviceCaptureProvider(device, format=args.format or connection_config.CAPTURE_FORMAT)
    else:
        provider = SyntheticCaptureProvider(audio=not args.no_audio, video=not args.no_video)
    return LocalMediaSession(provider)


def print_peers(session: MeshSession):
    links = session.manager.links
    if not links:
        print("연결된 참가자 없음")
        return
    for peer_id, link in links.items():
        name = session.manager.roster.get(peer_id, peer_id)
        print(f"  {name} ({peer_id}) - {link.state.value}")


async def run(args: argparse.Namespace) -> int:
    session = MeshSession(args.url, media=build_media(args))
    session.chat_log.subscribe(print)

    try:
        await session.join(args.room, args.name)
    except MediaError as e:
        print(f"미디어 장치 오류: {e}")
        return 1
    except OSError as e:
        print(f"시그널링 서버 연결 실패: {e}")
        return 1

    loop = asyncio.get_running_loop()
    print(f"룸 '{args.room}' 입장 ({args.name}). /leave로 종료")

    try:
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            text = line.strip()
            if not text:
                continue

            if text == "/leave":
                break
            elif text == "/mute":
                enabled = session.toggle_audio()
                print(f"오디오 {'켜짐' if enabled else '꺼짐'}")
            elif text == "/video":
                enabled = session.toggle_video()
                print(f"비디오 {'켜짐' if enabled else '꺼짐'}")
            elif text == "/peers":
                print_peers(session)
            else:
                reached = session.send_chat(text)
                if reached == 0:
                    logger.info("[Chat] 열린 채팅 채널이 없어 메시지가 전달되지 않음")
    finally:
        await session.leave()
    return 0


def main():
    parser = argparse.ArgumentParser(description="Meshroom 헤드리스 참가자")
    parser.add_argument("--url", type=str, default=connection_config.SIGNALING_URL, help="시그널링 서버 WebSocket 주소")
    parser.add_argument("--room", "-r", type=str, required=True, help="입장할 룸 ID")
    parser.add_argument("--name", "-n", type=str, default="Anon", help="표시 이름")
    parser.add_argument("--no-audio", action="store_true", help="오디오 트랙 없이 입장 (합성 트랙 사용 시)")
    parser.add_argument("--no-video", action="store_true", help="비디오 트랙 없이 입장 (합성 트랙 사용 시)")
    parser.add_argument("--device", type=str, help="캡처 장치 또는 미디어 파일 (미지정시 합성 트랙)")
    parser.add_argument("--format", type=str, help="캡처 장치 포맷 (예: v4l2, avfoundation, dshow)")
    parser.add_argument("--log-level", type=str, default="INFO", help="로그 레벨")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
