import atexit

from django.apps import AppConfig


class ChatConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.chat'
    label = 'chat'

    def ready(self):
        from .broadcaster import get_broadcaster

        broadcaster = get_broadcaster()
        broadcaster.start()
        atexit.register(broadcaster.stop)
