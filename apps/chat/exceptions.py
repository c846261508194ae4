# apps/chat/exceptions.py
"""
Error taxonomy of the messaging core.

Every error carries the HTTP status the REST layer answers with and a short
``code`` the GraphQL and websocket layers expose to clients.
"""


class MessagingError(Exception):
    status_code = 500
    code = "server_error"
    default_message = "Messaging failure."

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# ---------- 400 ----------
class ValidationError(MessagingError):
    status_code = 400
    code = "invalid"
    default_message = "Invalid message parameters."


class EmptyMessage(ValidationError):
    code = "empty_message"
    default_message = "Message text cannot be empty."


class EmptyText(ValidationError):
    code = "empty_text"
    default_message = "Message text cannot be empty."


class MessageTooLong(ValidationError):
    code = "message_too_long"
    default_message = "Message text is too long."


class InsufficientParticipants(ValidationError):
    code = "insufficient_participants"
    default_message = "Group conversation needs at least two participants."


class TooManyParticipants(ValidationError):
    code = "too_many_participants"
    default_message = "Group conversation has too many participants."


class MissingGroupName(ValidationError):
    code = "missing_group_name"
    default_message = "Group conversation needs a name."


class InvalidParticipant(ValidationError):
    code = "invalid_participant"
    default_message = "One or more participant IDs are invalid."


class InvalidTarget(ValidationError):
    code = "invalid_target"
    default_message = (
        "Invalid message parameters. Provide recipientId, conversationId, "
        "or participantIds/groupName."
    )


class CannotMessageSelf(ValidationError):
    code = "cannot_message_self"
    default_message = "You cannot start a conversation with yourself."


# ---------- 404 ----------
class NotFoundError(MessagingError):
    status_code = 404
    code = "not_found"
    default_message = "Not found."


class ConversationNotFound(NotFoundError):
    code = "conversation_not_found"
    default_message = "Conversation not found."


class UserNotFound(NotFoundError):
    code = "user_not_found"
    default_message = "Recipient user not found."


# ---------- 403 ----------
class AuthorizationError(MessagingError):
    status_code = 403
    code = "forbidden"
    default_message = "Not authorized."


class NotAParticipant(AuthorizationError):
    code = "not_a_participant"
    default_message = "Not authorized to send message to this conversation."


class NotAuthorized(AuthorizationError):
    code = "not_authorized"
    default_message = "Not authorized to view this conversation."


# ---------- internal ----------
class ConflictError(MessagingError):
    """Lost the race to create a direct conversation. Handled by the store."""
    status_code = 409
    code = "conflict"
    default_message = "Conversation already exists."


class PersistenceError(MessagingError):
    status_code = 500
    code = "persistence_error"
    default_message = "Server error sending message."
