"""룸 레지스트리 모듈.

이 모듈은 시그널링 서버의 룸(방)과 참가자 멤버십을 관리합니다.
미디어는 전혀 다루지 않는 순수한 장부(bookkeeping)이며,
릴레이가 join/leave 이벤트를 검증하고 팬아웃 대상을 계산할 때 사용합니다.

주요 기능:
    - 전송 연결 단위 참가자 등록/해제
    - 룸 입장/퇴장 (첫 입장 시 자동 생성, 비어있을 때 자동 삭제)
    - 연결 끊김 시 모든 룸에서 일괄 퇴장 (leave_all)
    - 룸별 참가자 목록 조회

Architecture:
    - rooms: Dict[str, Dict[str, Participant]] - 룸 ID → 참가자 맵 (입장 순서 유지)
    - participants: Dict[str, Participant] - 참가자 ID → 참가자
    - Participant.rooms: Set[str] - 참가자가 속한 룸 (join/leave로만 변경)

Thread Safety:
    모든 변경은 ``lock`` 아래에서 수행됩니다. 릴레이는 같은 lock을 잡은 채로
    스냅샷 계산과 메시지 큐잉을 함께 수행하여, 동시에 입장한 참가자들이
    서로를 빠뜨린 멤버 목록을 받지 않도록 합니다.

Examples:
    >>> registry = RoomRegistry()
    >>> registry.join("A1", "R1", "Alice").existing_members
    []
    >>> registry.join("B1", "R1", "Bob").existing_members
    ['A1']
"""
import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from ..shared.errors import InvalidRequest

logger = logging.getLogger(__name__)


@dataclass
class Participant:
    """전송 연결 하나에 대응하는 참가자.

    Attributes:
        participant_id (str): 릴레이가 연결 시 할당한 고유 ID
        display_name (str): 클라이언트가 보낸 표시 이름 (검증하지 않음)
        connection (Any): 전송 계층 연결 핸들 (WebSocket 등)
        rooms (Set[str]): 현재 참가 중인 룸 ID 집합
        outbox (asyncio.Queue): 이 참가자에게 보낼 메시지 큐 (송신 순서 유지)
    """
    participant_id: str
    display_name: str = "Anon"
    connection: Any = None
    rooms: Set[str] = field(default_factory=set)
    outbox: asyncio.Queue = field(default_factory=asyncio.Queue)


@dataclass
class JoinResult:
    """join 결과.

    Attributes:
        room_id (str): 입장한 룸 ID
        existing_members (List[str]): 입장 시점의 기존 참가자 ID (본인 제외, 입장 순서)
        is_new (bool): 새로 입장했으면 True, 같은 룸 재입장(no-op)이면 False
        left_rooms (Dict[str, List[str]]): switch 정책으로 암묵적으로 퇴장한 룸 → 남은 참가자
    """
    room_id: str
    existing_members: List[str]
    is_new: bool = True
    left_rooms: Dict[str, List[str]] = field(default_factory=dict)


class RoomRegistry:
    """룸 ID → 참가자 집합을 관리하는 권위 있는 레지스트리.

    Attributes:
        rooms (Dict[str, Dict[str, Participant]]): 룸 ID를 키로 하는 참가자 맵
        participants (Dict[str, Participant]): 연결된 모든 참가자
        switch_policy (str): 다른 룸 참가 중 join 요청 처리 정책 ("reject" | "switch")
        max_peers_per_room (int): 룸당 최대 인원 (0이면 무제한)
        lock (threading.RLock): 멤버십 변경 직렬화용 lock

    Design Patterns:
        - 자동 생성/삭제: 첫 입장 시 룸 생성, 마지막 퇴장 시 룸 해제
        - 멱등 연산: 재입장/중복 퇴장은 오류 없이 no-op
    """

    def __init__(self, switch_policy: str = "reject", max_peers_per_room: int = 0):
        """RoomRegistry 초기화.

        Args:
            switch_policy: "reject"면 두 번째 룸 join을 거부, "switch"면 이전 룸에서 퇴장 후 입장
            max_peers_per_room: 룸당 최대 인원 (0이면 무제한)
        """
        # room_id -> {participant_id: Participant}
        self.rooms: Dict[str, Dict[str, Participant]] = {}

        # participant_id -> Participant
        self.participants: Dict[str, Participant] = {}

        self.switch_policy = switch_policy
        self.max_peers_per_room = max_peers_per_room
        self.lock = threading.RLock()

    def connect(self, participant_id: str, connection: Any = None) -> Participant:
        """전송 연결 시 참가자를 등록합니다.

        Args:
            participant_id: 릴레이가 할당한 참가자 ID
            connection: 전송 계층 연결 핸들

        Returns:
            Participant: 등록된 참가자

        Raises:
            InvalidRequest: 같은 ID의 참가자가 이미 연결되어 있는 경우
        """
        with self.lock:
            if participant_id in self.participants:
                raise InvalidRequest(f"participant id already in use: {participant_id}")
            participant = Participant(participant_id=participant_id, connection=connection)
            self.participants[participant_id] = participant
            logger.debug(f"[Registry] 참가자 {participant_id} 등록")
            return participant

    def disconnect(self, participant_id: str) -> Dict[str, List[str]]:
        """전송 연결 종료 시 참가자를 제거합니다.

        속해 있던 모든 룸에서 먼저 퇴장시킨 뒤 참가자 레코드를 삭제합니다.

        Returns:
            Dict[str, List[str]]: 퇴장한 룸 ID → 남은 참가자 ID (peer-left 팬아웃 대상)
        """
        with self.lock:
            left = self.leave_all(participant_id)
            self.participants.pop(participant_id, None)
            return left

    def join(self, participant_id: str, room_id: str, display_name: str = "Anon") -> JoinResult:
        """참가자를 룸에 입장시키고 기존 참가자 목록을 반환합니다.

        룸이 없으면 생성합니다. 멤버십을 먼저 변경한 뒤 같은 lock 안에서
        스냅샷을 계산하므로, 동시에 입장한 두 참가자 중 나중에 처리된 쪽은
        반드시 먼저 처리된 쪽을 목록에서 보게 됩니다.

        Args:
            participant_id: 입장할 참가자 ID
            room_id: 룸 ID (빈 문자열 불가)
            display_name: 표시 이름

        Returns:
            JoinResult: 기존 참가자 목록(본인 제외)과 신규 입장 여부

        Raises:
            InvalidRequest: 룸 ID가 비었거나, 다른 룸에 이미 참가 중(reject 정책)이거나,
                룸이 가득 찬 경우. 이 경우 상태는 변경되지 않음

        Note:
            - 같은 룸 재입장은 no-op이며 동일한 멤버 목록을 반환
            - connect 없이 join하면 연결 핸들 없는 참가자로 등록됨

        Examples:
            >>> registry = RoomRegistry()
            >>> registry.join("A1", "R1", "Alice")
            JoinResult(room_id='R1', existing_members=[], is_new=True, left_rooms={})
            >>> registry.join("A1", "R1", "Alice").is_new
            False
        """
        if not isinstance(room_id, str) or not room_id.strip():
            raise InvalidRequest("room id is required")

        with self.lock:
            participant = self.participants.get(participant_id)
            room = self.rooms.get(room_id, {})

            # Idempotent re-join
            if participant is not None and room_id in participant.rooms:
                return JoinResult(
                    room_id=room_id,
                    existing_members=[pid for pid in room if pid != participant_id],
                    is_new=False,
                )

            other_rooms = set(participant.rooms) if participant else set()
            if other_rooms and self.switch_policy != "switch":
                raise InvalidRequest(
                    f"participant {participant_id} is already in room '{sorted(other_rooms)[0]}'"
                )

            if self.max_peers_per_room and len(room) >= self.max_peers_per_room:
                raise InvalidRequest(f"room '{room_id}' is full ({self.max_peers_per_room} peers)")

            left_rooms: Dict[str, List[str]] = {}
            for previous in sorted(other_rooms):
                left_rooms[previous] = self.leave(participant_id, previous)

            if participant is None:
                participant = Participant(participant_id=participant_id)
                self.participants[participant_id] = participant
            participant.display_name = display_name

            # Create room if doesn't exist
            if room_id not in self.rooms:
                self.rooms[room_id] = {}
                logger.info(f"[Registry] 룸 '{room_id}' 생성")

            existing = list(self.rooms[room_id].keys())
            self.rooms[room_id][participant_id] = participant
            participant.rooms.add(room_id)

            logger.info(f"[Registry] '{display_name}' ({participant_id}) 룸 '{room_id}' 입장. "
                        f"현재 {len(self.rooms[room_id])}명")

            return JoinResult(room_id=room_id, existing_members=existing, left_rooms=left_rooms)

    def leave(self, participant_id: str, room_id: str) -> List[str]:
        """참가자를 룸에서 퇴장시킵니다.

        이미 퇴장했거나 룸이 없으면 아무 작업도 하지 않습니다 (멱등).
        룸이 비게 되면 룸 항목을 해제합니다.

        Args:
            participant_id: 퇴장할 참가자 ID
            room_id: 룸 ID

        Returns:
            List[str]: 룸에 남은 참가자 ID. 참가자가 룸에 없었으면 빈 리스트
        """
        with self.lock:
            room = self.rooms.get(room_id)
            if room is None or participant_id not in room:
                return []

            participant = room.pop(participant_id)
            participant.rooms.discard(room_id)

            # Delete room if empty
            if not room:
                del self.rooms[room_id]
                logger.info(f"[Registry] 룸 '{room_id}' 삭제 (비어있음)")
                return []

            logger.info(f"[Registry] '{participant.display_name}' ({participant_id}) 룸 '{room_id}' 퇴장. "
                        f"현재 {len(room)}명")
            return list(room.keys())

    def leave_all(self, participant_id: str) -> Dict[str, List[str]]:
        """참가자를 속한 모든 룸에서 퇴장시킵니다.

        명시적 leave 없이 연결이 끊긴 클라이언트를 정리할 때 사용합니다.

        Returns:
            Dict[str, List[str]]: 퇴장한 룸 ID → 남은 참가자 ID
        """
        with self.lock:
            participant = self.participants.get(participant_id)
            room_ids = sorted(participant.rooms) if participant else [
                room_id for room_id, room in self.rooms.items() if participant_id in room
            ]
            return {room_id: self.leave(participant_id, room_id) for room_id in room_ids}

    def members(self, room_id: str) -> List[str]:
        """룸의 참가자 ID를 입장 순서대로 반환합니다."""
        with self.lock:
            return list(self.rooms.get(room_id, {}).keys())

    def get_participant(self, participant_id: str) -> Optional[Participant]:
        """참가자 ID로 Participant 객체를 조회합니다."""
        with self.lock:
            return self.participants.get(participant_id)

    def get_participant_rooms(self, participant_id: str) -> Set[str]:
        """참가자가 속한 룸 ID 집합의 복사본을 반환합니다."""
        with self.lock:
            participant = self.participants.get(participant_id)
            return set(participant.rooms) if participant else set()

    def get_room_list(self) -> List[dict]:
        """모든 룸의 정보를 리스트로 반환합니다.

        Returns:
            List[dict]: 룸 정보 딕셔너리의 리스트
                - room (str): 룸 ID
                - peer_count (int): 현재 참가자 수
                - peers (List[dict]): {id, userName} 리스트

        Examples:
            >>> registry = RoomRegistry()
            >>> registry.join("A1", "R1", "Alice")
            >>> registry.get_room_list()
            [{'room': 'R1', 'peer_count': 1, 'peers': [{'id': 'A1', 'userName': 'Alice'}]}]
        """
        with self.lock:
            return [
                {
                    "room": room_id,
                    "peer_count": len(members),
                    "peers": [{"id": p.participant_id, "userName": p.display_name}
                              for p in members.values()],
                }
                for room_id, members in self.rooms.items()
            ]

    def get_room_count(self, room_id: str) -> int:
        """룸의 현재 참가자 수를 반환합니다. 룸이 없으면 0."""
        with self.lock:
            return len(self.rooms.get(room_id, {}))
