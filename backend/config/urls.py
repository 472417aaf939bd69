from django.urls import path, include
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import (
    TokenObtainPairView,
    TokenRefreshView,
)
from users.views import RadiusUserViewSet
from nas.views import NASClientViewSet
from sessions.views import OnlineSessionViewSet, UsageLogViewSet
from radius.views import RadiusLogViewSet

router = DefaultRouter()
router.register(r'radius-users', RadiusUserViewSet)
router.register(r'nas', NASClientViewSet)
router.register(r'sessions', OnlineSessionViewSet)
router.register(r'usage-logs', UsageLogViewSet)
router.register(r'logs', RadiusLogViewSet)

urlpatterns = [
    path('api/token/', TokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('api/token/refresh/', TokenRefreshView.as_view(), name='token_refresh'),
    path('api/', include(router.urls)),
]
