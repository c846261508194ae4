# socialnet/urls.py
from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/messages/', include('apps.chat.urls')),
    path('api/users/', include('apps.users.urls')),
    path('', include('apps.graphql_api.urls')),
]
