from rest_framework import viewsets, filters
from rest_framework.permissions import IsAuthenticated
from django_filters.rest_framework import DjangoFilterBackend
from .serializers import RadiusUserSerializer
from .models import RadiusUser


class RadiusUserViewSet(viewsets.ModelViewSet):
    """
    API endpoint that allows subscribers and their quotas to be viewed or edited.
    """
    queryset = RadiusUser.objects.all()
    serializer_class = RadiusUserSerializer
    permission_classes = [IsAuthenticated]
    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    search_fields = ['username', 'notes']
    filterset_fields = ['is_active']
    ordering_fields = ['username', 'available_flow', 'available_time', 'created_at']
