from rest_framework import serializers
from .models import OnlineSession, UsageLog


class OnlineSessionSerializer(serializers.ModelSerializer):
    total_bytes = serializers.IntegerField(read_only=True)

    class Meta:
        model = OnlineSession
        fields = (
            'id', 'session_id', 'nas_ip_address', 'username', 'framed_ip_address',
            'nas_port_id', 'mac_address', 'start_time', 'last_updated',
            'upstream_bytes', 'downstream_bytes', 'total_bytes'
        )


class UsageLogSerializer(serializers.ModelSerializer):
    total_bytes = serializers.IntegerField(read_only=True)

    class Meta:
        model = UsageLog
        fields = (
            'id', 'acct_session_id', 'username', 'start_time', 'stop_time',
            'used_duration', 'total_upstream', 'total_downstream', 'total_bytes',
            'nas_ip_address', 'framed_ip_address', 'mac_address', 'terminate_cause'
        )
