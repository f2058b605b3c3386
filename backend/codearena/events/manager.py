import asyncio
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Dict, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)

CHALLENGE_UPDATED = "challenge-updated"
PARTICIPANT_JOINED = "challenge-participant-joined"
FINALIZATION_UPDATED = "finalization-updated"

Subscriber = Callable[[str, dict], Awaitable[None] | None]


class EventBroadcaster:
    """Fan-out of lifecycle events to websocket clients and in-process subscribers."""

    def __init__(self) -> None:
        self.challenge_connections: Dict[str, Set[WebSocket]] = defaultdict(set)
        self.global_connections: Set[WebSocket] = set()
        self._subscribers: list[Subscriber] = []
        self._pending: Set[asyncio.Task] = set()

    async def connect_challenge(self, challenge_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self.challenge_connections[challenge_id].add(websocket)

    def disconnect_challenge(self, challenge_id: str, websocket: WebSocket) -> None:
        if challenge_id in self.challenge_connections:
            self.challenge_connections[challenge_id].discard(websocket)
            if not self.challenge_connections[challenge_id]:
                del self.challenge_connections[challenge_id]

    async def connect_global(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.global_connections.add(websocket)

    def disconnect_global(self, websocket: WebSocket) -> None:
        self.global_connections.discard(websocket)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: str, payload: dict) -> None:
        """Schedule delivery without waiting for it; callers never block on clients."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, dropping event %s", event)
            return
        task = loop.create_task(self.broadcast(event, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def broadcast(self, event: str, payload: dict) -> None:
        message = {"type": event, "payload": payload}
        targets = set(self.global_connections)
        challenge_id = payload.get("challenge_id")
        if challenge_id:
            targets |= self.challenge_connections.get(str(challenge_id), set())

        for connection in targets:
            try:
                await connection.send_json(message)
            except Exception:  # noqa: BLE001
                logger.debug("Dropping websocket after failed send", exc_info=True)
                self.global_connections.discard(connection)
                for conns in self.challenge_connections.values():
                    conns.discard(connection)

        for callback in list(self._subscribers):
            try:
                result = callback(event, payload)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:  # noqa: BLE001
                logger.exception("Event subscriber failed for %s", event)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def connection_count(self) -> int:
        return len(self.global_connections) + sum(len(conns) for conns in self.challenge_connections.values())
