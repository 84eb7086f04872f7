"""FastAPI WebRTC Signaling Server for full-mesh rooms.

이 모듈은 룸 기반 풀 메시 WebRTC 화상 채팅을 위한 시그널링 서버를 제공합니다.
서버는 미디어를 전혀 다루지 않으며, 룸 멤버십과 참가자 간 협상 메시지
중계만 담당합니다.

주요 기능:
    - 룸 기반 참가자 관리 (첫 입장 시 생성, 마지막 퇴장 시 삭제)
    - 참가자 간 offer/answer/ICE candidate 중계 (송신자 ID는 서버가 기록)
    - 실시간 참가자 입/퇴장 알림
    - CORS 설정을 통한 크로스 오리진 요청 지원

Architecture:
    - Full Mesh: 각 클라이언트가 다른 모든 참가자와 직접 연결
    - RoomRegistry: 룸 및 참가자 멤버십 상태 관리
    - SignalRelay: join/leave 팬아웃 및 signal 전달
    - WebSocket: 실시간 시그널링 메시지 전송
"""
import glob
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from meshroom.modules.rooms import RoomRegistry, SignalRelay, get_relay_settings
from meshroom.routes import health_router, rooms_router, signaling_router, init_signaling_relay

settings = get_relay_settings()


def cleanup_old_logs(log_dir: str = settings.LOG_DIR, retention_days: int = settings.LOG_RETENTION_DAYS) -> int:
    """오래된 로그 파일을 삭제합니다.

    Args:
        log_dir: 로그 디렉토리 경로
        retention_days: 보관 기간 (일)

    Returns:
        삭제된 파일 수
    """
    if not os.path.exists(log_dir):
        return 0

    cutoff_date = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0

    for log_file in glob.glob(os.path.join(log_dir, "server_*.log")):
        try:
            date_str = os.path.basename(log_file).replace("server_", "").replace(".log", "")
            file_date = datetime.strptime(date_str, "%Y%m%d")

            if file_date < cutoff_date:
                os.remove(log_file)
                deleted_count += 1
        except (ValueError, OSError):
            continue

    return deleted_count


# 로그 설정
os.makedirs(settings.LOG_DIR, exist_ok=True)
log_filename = os.path.join(settings.LOG_DIR, f"server_{datetime.now().strftime('%Y%m%d')}.log")

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(),  # 콘솔 출력
        logging.FileHandler(log_filename, encoding="utf-8"),  # 파일 저장
    ]
)
logger = logging.getLogger(__name__)
logger.info(f"로깅 초기화 완료: level={settings.LOG_LEVEL}")


# 글로벌 레지스트리/릴레이 인스턴스
registry = RoomRegistry(
    switch_policy=settings.ROOM_SWITCH_POLICY,
    max_peers_per_room=settings.MAX_PEERS_PER_ROOM,
)
relay = SignalRelay(registry)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI 앱의 생명주기를 관리하는 컨텍스트 매니저.

    Note:
        - 시작: 오래된 로그 파일 정리
        - 종료: 연결된 모든 참가자 정리 (남은 참가자에게 peer-left 전송)
    """
    logger.info("WebRTC 시그널링 서버 시작 중...")

    deleted_logs = cleanup_old_logs()
    if deleted_logs > 0:
        logger.info(f"오래된 로그 파일 {deleted_logs}개 정리 완료 ({settings.LOG_RETENTION_DAYS}일 이상)")

    yield

    logger.info("서버 종료 중...")
    relay.close_all()


app = FastAPI(title="Meshroom Signaling Server", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials="*" not in settings.cors_origin_list,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 라우터 등록
app.include_router(health_router)
app.include_router(rooms_router)
app.include_router(signaling_router)

# WebSocket 시그널링 라우터에 릴레이 인스턴스 전달
init_signaling_relay(relay)


@app.get("/")
async def root():
    """서버 상태 확인 엔드포인트.

    Returns:
        dict: 서버 상태 정보
            - status (str): 서버 상태
            - service (str): 서비스 이름
            - rooms (int): 활성 룸 수
    """
    return {"status": "ok", "service": "Meshroom Signaling Server", "rooms": len(registry.rooms)}


def main():
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
