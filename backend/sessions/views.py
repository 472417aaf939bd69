from rest_framework import viewsets, permissions, filters
from django_filters.rest_framework import DjangoFilterBackend
from .models import OnlineSession, UsageLog
from .serializers import OnlineSessionSerializer, UsageLogSerializer


class OnlineSessionViewSet(viewsets.ReadOnlyModelViewSet):
    """
    API endpoint that allows online sessions to be viewed.
    """
    queryset = OnlineSession.objects.all().order_by('-start_time')
    serializer_class = OnlineSessionSerializer
    permission_classes = [permissions.IsAuthenticated]
    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    search_fields = ['username', 'session_id', 'nas_ip_address', 'mac_address']
    filterset_fields = ['nas_ip_address', 'username']


class UsageLogViewSet(viewsets.ReadOnlyModelViewSet):
    """
    API endpoint that allows settled usage records to be viewed.
    """
    queryset = UsageLog.objects.all().order_by('-stop_time')
    serializer_class = UsageLogSerializer
    permission_classes = [permissions.IsAuthenticated]
    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    search_fields = ['username', 'acct_session_id', 'nas_ip_address']
    filterset_fields = ['username', 'nas_ip_address', 'terminate_cause']
