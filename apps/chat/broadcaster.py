# apps/chat/broadcaster.py
"""
Best-effort realtime fan-out over the Channels layer.

Topics are channel-layer groups: ``chat_<conversation id>`` for live
messages of an open chat and ``user_<user id>`` for per-user notices
(conversation list updates). Nothing here touches the database and
nothing here retries: a subscriber that is not connected when a message
is published gets it from history on its next fetch.
"""
import logging
import threading
from typing import Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from channels.layers import DEFAULT_CHANNEL_LAYER

logger = logging.getLogger(__name__)

CHAT_MESSAGE_EVENT = "chat.message"
CONVERSATION_UPDATED_EVENT = "conversation.updated"


def conversation_group(conversation_id) -> str:
    return f"chat_{conversation_id}"


def user_group(user_id) -> str:
    return f"user_{user_id}"


class Broadcaster:
    def __init__(self, channel_layer=None, alias: str = DEFAULT_CHANNEL_LAYER):
        self.alias = alias
        self._injected_layer = channel_layer
        self._layer = None
        self.running = False

    # --- lifecycle ---
    def start(self) -> None:
        if self.running:
            return
        self._layer = self._injected_layer or get_channel_layer(self.alias)
        if self._layer is None:
            logger.warning("No channel layer '%s' configured; realtime delivery disabled", self.alias)
        self.running = True
        logger.debug("Broadcaster started on layer %r", self._layer)

    def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        self._layer = None
        logger.debug("Broadcaster stopped")

    @property
    def layer(self):
        return self._layer if self.running else None

    # --- subscriptions ---
    async def subscribe_user(self, channel_name: str, user_id) -> Optional[str]:
        return await self._group_add(user_group(user_id), channel_name)

    async def subscribe_conversation(self, channel_name: str, conversation_id) -> Optional[str]:
        return await self._group_add(conversation_group(conversation_id), channel_name)

    async def unsubscribe_conversation(self, channel_name: str, conversation_id) -> None:
        await self._group_discard(conversation_group(conversation_id), channel_name)

    async def discard(self, channel_name: str, groups) -> None:
        """Drop a connection from every group it joined."""
        for group in list(groups):
            await self._group_discard(group, channel_name)

    # --- publishing ---
    async def publish(self, conversation_id, payload: dict) -> bool:
        return await self._send(
            conversation_group(conversation_id),
            {
                "type": CHAT_MESSAGE_EVENT,
                "conversation_id": conversation_id,
                "message": payload,
            },
        )

    async def notify_user(self, user_id, payload: dict) -> bool:
        return await self._send(
            user_group(user_id),
            {
                "type": CONVERSATION_UPDATED_EVENT,
                "conversation": payload,
            },
        )

    def publish_sync(self, conversation_id, payload: dict) -> bool:
        return async_to_sync(self.publish)(conversation_id, payload)

    def notify_user_sync(self, user_id, payload: dict) -> bool:
        return async_to_sync(self.notify_user)(user_id, payload)

    # --- layer plumbing ---
    async def _group_add(self, group: str, channel_name: str) -> Optional[str]:
        layer = self.layer
        if layer is None:
            return None
        await layer.group_add(group, channel_name)
        return group

    async def _group_discard(self, group: str, channel_name: str) -> None:
        layer = self.layer
        if layer is None:
            return
        await layer.group_discard(group, channel_name)

    async def _send(self, group: str, event: dict) -> bool:
        layer = self.layer
        if layer is None:
            logger.debug("Dropping %s for %s: broadcaster not running", event["type"], group)
            return False
        try:
            await layer.group_send(group, event)
        except Exception:
            # fan-out is best effort; the message is already stored
            logger.exception("Failed to publish %s to %s", event["type"], group)
            return False
        return True


_default_broadcaster: Optional[Broadcaster] = None
_default_lock = threading.Lock()


def get_broadcaster() -> Broadcaster:
    """The process-wide broadcaster, started by ChatConfig.ready()."""
    global _default_broadcaster
    with _default_lock:
        if _default_broadcaster is None:
            _default_broadcaster = Broadcaster()
        return _default_broadcaster
