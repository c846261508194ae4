# apps/chat/models.py

from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.contrib.auth import get_user_model

from .managers import ConversationManager, MessageManager

User = get_user_model()


class Conversation(models.Model):
    is_group = models.BooleanField(default=False)
    group_name = models.CharField(max_length=100, null=True, blank=True)
    # "<low user id>:<high user id>" for direct conversations, NULL for groups
    direct_key = models.CharField(max_length=64, null=True, blank=True, editable=False)
    last_message = models.ForeignKey(
        'Message',
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name='+'
    )
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now, db_index=True)

    participants = models.ManyToManyField(
        User,
        through='ConversationParticipant',
        related_name='conversations'
    )

    objects = ConversationManager()

    class Meta:
        ordering = ['-updated_at', '-id']
        constraints = [
            models.UniqueConstraint(fields=['direct_key'], name='chat_unique_direct_pair'),
            models.CheckConstraint(
                condition=(
                    Q(is_group=True, group_name__isnull=False, direct_key__isnull=True)
                    | Q(is_group=False, group_name__isnull=True, direct_key__isnull=False)
                ),
                name='chat_conversation_kind',
            ),
        ]

    def __str__(self):
        if self.is_group:
            return f"Group {self.group_name} ({self.id})"
        return f"Conversation {self.id}"

    def participant_ids(self):
        """Participant user ids in join order."""
        return list(
            self.conversation_participants
            .order_by('id')
            .values_list('user_id', flat=True)
        )

    def has_participant(self, user_id) -> bool:
        return self.conversation_participants.filter(user_id=user_id).exists()


class ConversationParticipant(models.Model):
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='conversation_participants'
    )
    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name='conversation_participants'
    )
    joined_at = models.DateTimeField(default=timezone.now)

    class Meta:
        unique_together = ('user', 'conversation')

    def __str__(self):
        return f"{self.user.username} in Conversation {self.conversation.id}"


class Message(models.Model):
    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name='messages'
    )
    sender = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='sent_messages'
    )
    text = models.TextField()
    created_at = models.DateTimeField(default=timezone.now)

    objects = MessageManager()

    class Meta:
        ordering = ['created_at', 'id']
        indexes = [
            models.Index(fields=['conversation', 'created_at'], name='chat_msg_conv_created_idx'),
        ]

    def __str__(self):
        return f"Message {self.id} in Conversation {self.conversation_id}"
