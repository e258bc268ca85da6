from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from swapsync.api.websocket.ws_manager import ws_manager
from swapsync.configuration.config import settings
from swapsync.core.errors import SwapSyncError
from swapsync.core.structures.structures import InitialSwapState, SyncUpdate, WebsocketInboundMessage
from swapsync.core.sync.sync_coordinator import SyncCoordinator
from swapsync.logging.logger import get_logger

router = APIRouter()
log = get_logger(__name__)


def _initial_swap_state() -> InitialSwapState:
    return InitialSwapState(
        source_symbol=settings.DEFAULT_SOURCE_SYMBOL or None,
        target_symbol=settings.DEFAULT_TARGET_SYMBOL or None,
        raw_amount=settings.DEFAULT_SOURCE_AMOUNT,
        slippage_tolerance_pct=settings.DEFAULT_SLIPPAGE_TOLERANCE_PCT,
    )


def _require(payload: Optional[Dict[str, Any]], field: str) -> Any:
    if not payload or field not in payload:
        raise ValueError(f"Missing '{field}' in payload")
    return payload[field]


async def _pump_updates(ws: WebSocket, updates: AsyncIterator[SyncUpdate]) -> None:
    """Forward every coordinator update to the client."""
    async for update in updates:
        await ws_manager.send_json(ws, {"type": "update", "payload": update.to_plain_dict()})
        log.debug("[WS][UPDATE] phase=%s errors=%d", update.phase.value, len(update.errors))


async def _handle_message(ws: WebSocket, coordinator: SyncCoordinator, inbound: WebsocketInboundMessage) -> None:
    message_type = inbound.type
    payload = inbound.payload

    if message_type == "ping":
        await ws_manager.send_json(ws, {"type": "pong"})
        log.debug("[WS][RECV] Ping → Pong.")
    elif message_type == "select_source":
        coordinator.select_source(_require(payload, "symbol"))
    elif message_type == "select_target":
        coordinator.select_target(_require(payload, "symbol"))
    elif message_type == "set_amount":
        coordinator.set_amount(str(_require(payload, "amount")))
    elif message_type == "swap":
        coordinator.swap_pair()
    elif message_type == "dismiss":
        coordinator.dismiss_error(_require(payload, "dependency"))
    elif message_type == "retry":
        coordinator.retry(_require(payload, "dependency"))
    elif message_type == "set_slippage":
        coordinator.set_slippage_tolerance(float(_require(payload, "percent")))
    else:
        log.debug("[WS][RECV] Unknown message type: %s", message_type)
        await ws_manager.send_json(ws, {"type": "error", "payload": f"Unknown message type: {message_type}"})


@router.websocket("/ws/swap")
async def swap_websocket(ws: WebSocket) -> None:
    """
    WebSocket endpoint: one swap session per connection.

    Streams `update` messages for the session's pair and applies inbound commands.
    Token and price caches are shared with every other session of the app.
    """
    await ws.accept()
    ws_manager.connect(ws)
    log.info("[WS][CONNECT] Client connected.")

    state = ws.app.state
    initial = _initial_swap_state()
    coordinator = SyncCoordinator(
        state.provider,
        catalog=state.catalog,
        token_cache=state.token_cache,
        price_cache=state.price_cache,
        debounce_seconds=settings.AMOUNT_DEBOUNCE_MS / 1000.0,
        slippage_tolerance_pct=initial.slippage_tolerance_pct,
    )
    pump: Optional["asyncio.Task[None]"] = None

    try:
        updates = coordinator.subscribe(initial.source_symbol, initial.target_symbol, initial.raw_amount)
        pump = asyncio.create_task(_pump_updates(ws, updates))
        while True:
            raw_message = await ws.receive_json()
            try:
                inbound = WebsocketInboundMessage.model_validate(raw_message)
            except ValidationError as exc:
                log.debug("[WS][RECV] Invalid message schema: %s", exc)
                await ws_manager.send_json(ws, {"type": "error", "payload": "Invalid message schema"})
                continue

            try:
                await _handle_message(ws, coordinator, inbound)
            except (SwapSyncError, ValueError, TypeError) as exc:
                log.info("[WS][RECV] Rejected %s: %s", inbound.type, exc)
                await ws_manager.send_json(ws, {"type": "error", "payload": str(exc)})

    except WebSocketDisconnect:
        log.info("[WS][DISCONNECT] Client disconnected.")
    except Exception as exc:
        log.exception("[WS][ERROR] WebSocket error: %s", exc)
        try:
            await ws_manager.send_json(ws, {"type": "error", "payload": str(exc)})
        except Exception:
            log.debug("[WS][ERROR] Could not report the error to the client.")
    finally:
        await coordinator.close()
        if pump is not None:
            pump.cancel()
            await asyncio.gather(pump, return_exceptions=True)
        ws_manager.disconnect(ws)
        log.debug("[WS][CLEANUP] Session closed and socket removed from manager.")
