from django.urls import path
from .views import ConversationListView, ConversationMessagesView, MessageCreateView

urlpatterns = [
    path('', MessageCreateView.as_view(), name='message-create'),
    path('conversations/', ConversationListView.as_view(), name='conversation-list'),
    path('conversations/<int:conversation_id>/', ConversationMessagesView.as_view(), name='conversation-messages'),
]
