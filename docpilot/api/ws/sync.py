import asyncio
import json
import logging
from typing import Dict, Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession

from docpilot.core.auth import authenticate
from docpilot.core.db import get_db
from docpilot.db.change_feed import InMemoryChangeFeed, Subscription, get_change_feed
from docpilot.domains.collaboration.notifications import ChangeNotificationAdapter
from docpilot.domains.documents.services import FileService

logger = logging.getLogger(__name__)

router = APIRouter()


class ConnectionManager:
    def __init__(self):
        # Активные соединения: {file_id: {user_id: websocket}}
        self.active_connections: Dict[str, Dict[str, WebSocket]] = {}

    async def connect(self, websocket: WebSocket, file_id: str, user_id: str):
        """Подключение пользователя к файлу"""
        self.active_connections.setdefault(file_id, {})[user_id] = websocket

        await websocket.send_text(json.dumps({
            "type": "connected",
            "data": {
                "file_id": file_id,
                "user_id": user_id,
                "active_users": list(self.active_connections[file_id].keys())
            }
        }))
        await self.broadcast_to_file(file_id, {
            "type": "user_joined",
            "data": {
                "user_id": user_id,
                "active_users": list(self.active_connections[file_id].keys())
            }
        }, exclude_user=user_id)
        logger.info(f"User {user_id} connected to file {file_id}")

    def disconnect(self, file_id: str, user_id: str):
        """Отключение пользователя от файла"""
        connections = self.active_connections.get(file_id)
        if connections is None:
            return

        connections.pop(user_id, None)
        if not connections:
            del self.active_connections[file_id]
        logger.info(f"User {user_id} disconnected from file {file_id}")

    async def broadcast_to_file(self, file_id: str, message: dict, exclude_user: Optional[str] = None):
        """Рассылка сообщения всем пользователям файла"""
        message_json = json.dumps(message)
        disconnected_users = []

        for user_id, websocket in list(self.active_connections.get(file_id, {}).items()):
            if exclude_user and user_id == exclude_user:
                continue
            try:
                await websocket.send_text(message_json)
            except (WebSocketDisconnect, RuntimeError):
                disconnected_users.append(user_id)

        for user_id in disconnected_users:
            self.disconnect(file_id, user_id)


manager = ConnectionManager()


async def relay_notifications(
    websocket: WebSocket,
    adapter: ChangeNotificationAdapter,
    subscription: Subscription
) -> None:
    """Пересылка типизированных изменений файла клиенту"""
    async for notification in adapter.stream(subscription):
        await websocket.send_text(json.dumps({
            "type": "file_change",
            "data": notification.model_dump(mode="json")
        }))


async def stop_relay(relay: asyncio.Task) -> None:
    """Отмена пересылки и разбор ее завершения"""
    relay.cancel()
    [outcome] = await asyncio.gather(relay, return_exceptions=True)
    if isinstance(outcome, WebSocketDisconnect):
        logger.debug(f"Relay stopped, client already gone: {outcome}")
    elif isinstance(outcome, Exception):
        logger.error(f"Relay of file notifications failed: {outcome!r}")


@router.websocket("/ws/files/{file_id}")
async def file_websocket(
    websocket: WebSocket,
    file_id: uuid.UUID,
    token: str = Query(...),
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed)
):
    """Поток изменений одного файла; подписка снимается при отключении"""
    try:
        user = await authenticate(token, db)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    file_service = FileService(db, feed)
    result = await file_service.get_file(user.uuid, file_id)
    if not result.ok:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    adapter = ChangeNotificationAdapter(feed)
    subscription = adapter.subscribe_file(file_id)
    relay = asyncio.create_task(relay_notifications(websocket, adapter, subscription))

    file_key, user_key = str(file_id), str(user.uuid)
    await manager.connect(websocket, file_key, user_key)

    try:
        while True:
            message = json.loads(await websocket.receive_text())
            message_type = message.get("type")

            if message_type == "ping":
                await websocket.send_text(json.dumps({"type": "pong"}))

            elif message_type == "cursor":
                cursor_data = dict(message.get("data") or {})
                cursor_data["user_id"] = user_key
                await manager.broadcast_to_file(file_key, {"type": "cursor", "data": cursor_data}, exclude_user=user_key)

            elif message_type == "sync_request":
                # Актуальное содержимое для ручного обновления клиента
                current = await file_service.get_file(user.uuid, file_id)
                if current.ok:
                    await websocket.send_text(json.dumps({
                        "type": "sync_response",
                        "data": {"file_id": file_key, "content": current.value.content}
                    }))
                else:
                    await websocket.send_text(json.dumps({"type": "file_deleted", "data": {"file_id": file_key}}))

    except WebSocketDisconnect:
        logger.debug(f"WebSocket for file {file_key} closed by {user_key}")
    except json.JSONDecodeError as e:
        logger.warning(f"Malformed websocket message from {user_key}: {e}")
        await websocket.close(code=status.WS_1003_UNSUPPORTED_DATA)
    finally:
        adapter.unsubscribe(subscription)
        await stop_relay(relay)
        manager.disconnect(file_key, user_key)
        await manager.broadcast_to_file(file_key, {
            "type": "user_left",
            "data": {
                "user_id": user_key,
                "active_users": list(manager.active_connections.get(file_key, {}).keys())
            }
        })
