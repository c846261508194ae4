# apps/chat/consumers.py
import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer

from .broadcaster import conversation_group, get_broadcaster
from .managers import coerce_id
from .services import MessagingService

logger = logging.getLogger(__name__)

CLOSE_UNAUTHENTICATED = 4401
CLOSE_FORBIDDEN = 4403


class ChatConsumer(AsyncJsonWebsocketConsumer):
    """
    One connection per client. Clients subscribe to their own user topic and
    to any number of conversation topics; disconnecting leaves all of them.
    Connecting to ``ws/chat/<id>/`` joins that conversation up front.
    """

    async def connect(self):
        self.user = self.scope.get("user")
        self.joined_groups = set()
        if not self.user or not self.user.is_authenticated:
            await self.close(code=CLOSE_UNAUTHENTICATED)
            return

        self.broadcaster = get_broadcaster()

        conversation_id = self.scope.get("url_route", {}).get("kwargs", {}).get("conversation_id")
        if conversation_id is not None and not await self.is_participant(conversation_id):
            logger.info("User %s refused on conversation %s socket", self.user.id, conversation_id)
            await self.close(code=CLOSE_FORBIDDEN)
            return

        await self.accept()
        logger.debug("Socket %s connected for user %s", self.channel_name, self.user.id)
        if conversation_id is not None:
            await self.handle_join_conversation(conversation_id)

    async def disconnect(self, close_code):
        broadcaster = getattr(self, "broadcaster", None)
        if broadcaster is not None and self.joined_groups:
            await broadcaster.discard(self.channel_name, self.joined_groups)
        self.joined_groups = set()
        logger.debug("Socket %s disconnected (%s)", self.channel_name, close_code)

    # This is the main dispatcher for incoming WebSocket messages
    async def receive_json(self, content, **kwargs):
        if not isinstance(content, dict):
            await self.send_error("Malformed message.")
            return
        command = content.get("type")

        if command == "joinUser":
            await self.handle_join_user(content.get("userId"))
        elif command == "joinConversation":
            await self.handle_join_conversation(content.get("conversationId"))
        elif command == "leaveConversation":
            await self.handle_leave_conversation(content.get("conversationId"))
        elif command == "sendMessage":
            await self.handle_send_message(content.get("message"))
        else:
            await self.send_error(f"Unknown command: {command}")

    # --- Handlers for specific commands ---

    async def handle_join_user(self, user_id=None):
        if user_id is not None and coerce_id(user_id) != self.user.id:
            await self.send_error("Cannot join another user's channel.")
            return
        group = await self.broadcaster.subscribe_user(self.channel_name, self.user.id)
        if group is None:
            await self.send_error("Realtime channel unavailable.")
            return
        self.joined_groups.add(group)
        logger.info("User %s joined their private room", self.user.id)
        await self.send_json({"type": "joinedUser", "userId": self.user.id})

    async def handle_join_conversation(self, conversation_id):
        pk = coerce_id(conversation_id)
        if pk is None or not await self.is_participant(pk):
            await self.send_error("Not authorized to join this conversation.")
            return
        group = await self.broadcaster.subscribe_conversation(self.channel_name, pk)
        if group is None:
            await self.send_error("Realtime channel unavailable.")
            return
        self.joined_groups.add(group)
        logger.info("User %s joined conversation room %s", self.user.id, pk)
        await self.send_json({"type": "joinedConversation", "conversationId": pk})

    async def handle_leave_conversation(self, conversation_id):
        pk = coerce_id(conversation_id)
        if pk is None:
            await self.send_error("Invalid conversation id.")
            return
        await self.broadcaster.unsubscribe_conversation(self.channel_name, pk)
        self.joined_groups.discard(conversation_group(pk))
        await self.send_json({"type": "leftConversation", "conversationId": pk})

    async def handle_send_message(self, payload):
        # broadcast trigger only; durable sends go through POST messages
        if not isinstance(payload, dict):
            await self.send_error("Message payload must be an object.")
            return
        pk = coerce_id(payload.get("conversationId"))
        if pk is None or conversation_group(pk) not in self.joined_groups:
            await self.send_error("Join the conversation before sending to it.")
            return
        await self.broadcaster.publish(pk, {**payload, "conversationId": pk, "senderId": self.user.id})

    async def send_error(self, detail):
        await self.send_json({"type": "error", "detail": detail})

    # --- Methods to broadcast events back to the client ---

    async def chat_message(self, event):
        await self.send_json({
            "type": "newMessage",
            "conversationId": event["conversation_id"],
            "message": event["message"],
        })

    async def conversation_updated(self, event):
        await self.send_json({
            "type": "conversationUpdated",
            "conversation": event["conversation"],
        })

    # --- Database helpers ---
    @database_sync_to_async
    def is_participant(self, conversation_id):
        return MessagingService(broadcaster=self.broadcaster).is_participant(self.user.id, conversation_id)
