from rest_framework import viewsets, permissions, filters
from django_filters.rest_framework import DjangoFilterBackend
from .models import NASClient
from .serializers import NASClientSerializer


class NASClientViewSet(viewsets.ModelViewSet):
    """
    API endpoint that allows NAS Clients to be viewed or edited.
    """
    queryset = NASClient.objects.all()
    serializer_class = NASClientSerializer
    permission_classes = [permissions.IsAuthenticated]
    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    search_fields = ['identifier', 'ip_address', 'description']
    filterset_fields = ['is_active', 'ip_address']
