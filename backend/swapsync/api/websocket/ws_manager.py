from __future__ import annotations

import asyncio
from datetime import datetime
from enum import Enum
from typing import Any, Dict

from fastapi.encoders import jsonable_encoder
from starlette.websockets import WebSocket

from swapsync.logging.logger import get_logger

log = get_logger(__name__)


class WsManager:
    """Tracks active swap sessions and serializes sends per socket.

    Notes:
        - A session socket is written by its update pump and its message loop; `send_json`
          holds a per-socket lock so frames never interleave.
        - Payloads go through `jsonable_encoder` before they reach the socket.
    """

    def __init__(self) -> None:
        self._locks: Dict[WebSocket, asyncio.Lock] = {}

    @property
    def active_count(self) -> int:
        return len(self._locks)

    def connect(self, ws: WebSocket) -> None:
        """Track an accepted swap session socket."""
        self._locks[ws] = asyncio.Lock()
        log.debug("WebSocket connected (total=%d)", len(self._locks))

    def disconnect(self, ws: WebSocket) -> None:
        """Forget a session socket; unknown sockets are ignored."""
        self._locks.pop(ws, None)
        log.debug("WebSocket disconnected (total=%d)", len(self._locks))

    @staticmethod
    def _to_json_compatible(data: Any) -> Any:
        """Encode a payload for `send_json`.

        - Enum -> .value
        - datetime -> ISO-8601 string
        """
        return jsonable_encoder(
            data,
            custom_encoder={
                Enum: lambda e: e.value,
                datetime: lambda dt: dt.isoformat(),
            },
        )

    async def send_json(self, ws: WebSocket, data: Any) -> None:
        payload = self._to_json_compatible(data)
        lock = self._locks.get(ws)
        if lock is None:
            await ws.send_json(payload)
            return
        async with lock:
            await ws.send_json(payload)


ws_manager = WsManager()
