"""룸 조회 및 ICE 서버 API 라우터."""

import logging

from fastapi import APIRouter, HTTPException

from meshroom.modules.webrtc.config import ice_config
from .signaling import get_relay

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["rooms"])


@router.get("/rooms")
async def list_rooms():
    """활성 룸 목록과 참가자를 반환합니다.

    Returns:
        dict: ``{"rooms": [{"room", "peer_count", "peers": [{"id", "userName"}]}]}``
    """
    relay = get_relay()
    if relay is None:
        raise HTTPException(status_code=503, detail="Server not ready")
    return {"rooms": relay.registry.get_room_list()}


@router.get("/ice-servers")
async def ice_servers():
    """클라이언트가 RTCPeerConnection에 넘길 STUN/TURN 서버 목록을 반환합니다.

    Returns:
        list: ICE server 설정 리스트 (STUN + 설정된 경우 TURN)
    """
    servers = ice_config.ice_servers()
    logger.info(f"ICE 서버 제공: {'STUN + TURN' if ice_config.has_turn_server else 'STUN만 (TURN 미설정)'}")
    return servers
