from rest_framework import serializers
from .models import Customer


class CustomerSerializer(serializers.ModelSerializer):
    display_name = serializers.CharField(read_only=True)

    class Meta:
        model = Customer
        fields = [
            'id', 'name', 'company', 'display_name', 'phone', 'email', 'address',
            'is_active', 'created_at', 'updated_at'
        ]

    def validate_phone(self, value):
        # Blank phones are stored as NULL so the unique constraint ignores them
        return value or None
