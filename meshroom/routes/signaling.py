"""시그널링 WebSocket 라우터.

룸 참가/퇴장과 참가자 간 signal 전달을 위한 WebSocket 엔드포인트를 제공합니다.
메시지 해석과 팬아웃은 SignalRelay가 담당하고, 이 모듈은 전송만 다룹니다.
"""

import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from meshroom.modules.rooms import Participant, SignalRelay

logger = logging.getLogger(__name__)

router = APIRouter()

# 글로벌 릴레이 참조 (app.py에서 설정됨)
_relay: Optional[SignalRelay] = None


def init_relay(relay: SignalRelay):
    """릴레이 인스턴스를 초기화합니다.

    app.py에서 호출하여 글로벌 릴레이 참조를 설정합니다.

    Args:
        relay: SignalRelay 인스턴스
    """
    global _relay
    _relay = relay
    logger.info("시그널링 라우터 릴레이 초기화 완료")


def get_relay() -> Optional[SignalRelay]:
    return _relay


async def _drain_outbox(websocket: WebSocket, participant: Participant):
    """참가자 outbox의 메시지를 순서대로 WebSocket으로 보냅니다.

    연결마다 하나만 실행되므로 송신 순서가 큐 순서와 같습니다.
    """
    try:
        while True:
            message = await participant.outbox.get()
            await websocket.send_json(message)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.warning(f"피어 {participant.participant_id} 송신 중단: {e}")


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """시그널링 WebSocket 엔드포인트.

    처리하는 메시지 타입:
        - join-room: 룸 참가 (room, userName)
        - leave-room: 룸 퇴장 (room)
        - signal: 다른 참가자에게 협상 payload 전달 (to, payload)

    모든 프레임은 ``{"type": ..., "data": {...}}`` 형태의 JSON입니다.
    연결이 끊기면 참가 중이던 모든 룸에 peer-left가 전송됩니다.

    Args:
        websocket: FastAPI WebSocket 연결 객체
    """
    if _relay is None:
        logger.error("릴레이가 초기화되지 않음")
        await websocket.close(code=1011, reason="Server not ready")
        return

    await websocket.accept()

    participant = _relay.connect(websocket)
    participant_id = participant.participant_id
    writer = asyncio.create_task(_drain_outbox(websocket, participant))

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))

            raw = frame.get("text")
            if raw is None:
                _relay.reject(participant_id, "binary frames are not supported")
                continue
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                _relay.reject(participant_id, "message is not valid JSON")
                continue
            _relay.dispatch(participant_id, message)

    except WebSocketDisconnect:
        logger.info(f"피어 {participant_id} 연결 끊김")
    except Exception as e:
        logger.error(f"피어 {participant_id}의 WebSocket 연결 중 오류: {e}")
    finally:
        _relay.on_disconnect(participant_id)
        writer.cancel()
