from rest_framework import serializers
from .models import RadiusUser


class RadiusUserSerializer(serializers.ModelSerializer):
    has_quota = serializers.BooleanField(read_only=True)
    online_sessions = serializers.SerializerMethodField()

    class Meta:
        model = RadiusUser
        fields = (
            'id', 'username', 'available_flow', 'available_time', 'has_quota',
            'online_sessions', 'is_active', 'notes', 'created_at', 'updated_at'
        )
        read_only_fields = ('id', 'created_at', 'updated_at')

    def get_online_sessions(self, obj):
        from sessions.models import OnlineSession
        return OnlineSession.objects.filter(username=obj.username).count()

    def validate_available_flow(self, value):
        if value < 0:
            raise serializers.ValidationError("Flow quota cannot be negative.")
        return value

    def validate_available_time(self, value):
        if value < 0:
            raise serializers.ValidationError("Time quota cannot be negative.")
        return value
