# socialnet/asgi.py
import os
from django.core.asgi import get_asgi_application

# --- Step 1: Set the default settings module ---
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'socialnet.settings')

# --- Step 2: Initialize the Django application registry ---
# Models must be loaded before the consumers and middleware are imported.
django_asgi_app = get_asgi_application()

# --- Step 3: Now that Django is loaded, we can safely import Channels and our routing ---
from channels.routing import ProtocolTypeRouter, URLRouter  # noqa: E402
from channels.security.websocket import AllowedHostsOriginValidator  # noqa: E402
from apps.chat.middleware import JwtAuthMiddleware  # noqa: E402
import apps.chat.routing  # noqa: E402

application = ProtocolTypeRouter({
    "http": django_asgi_app,
    "websocket": AllowedHostsOriginValidator(
        JwtAuthMiddleware(
            URLRouter(
                apps.chat.routing.websocket_urlpatterns
            )
        )
    ),
})
