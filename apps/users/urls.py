from django.urls import path
from .views import UserLookupView

urlpatterns = [
    path('<int:user_id>/', UserLookupView.as_view(), name='user-lookup'),
]
