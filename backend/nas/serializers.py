from rest_framework import serializers
from .models import NASClient


class NASClientSerializer(serializers.ModelSerializer):
    shared_secret = serializers.CharField(write_only=True, max_length=128)

    class Meta:
        model = NASClient
        fields = (
            'id', 'identifier', 'ip_address', 'shared_secret', 'acct_port',
            'is_active', 'description', 'created_at', 'updated_at'
        )
        read_only_fields = ('id', 'created_at', 'updated_at')
