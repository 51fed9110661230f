from rest_framework import serializers
from .models import Store


class StoreSerializer(serializers.ModelSerializer):
    class Meta:
        model = Store
        fields = ['id', 'name', 'code', 'store_type', 'address', 'phone', 'email', 'is_active', 'created_at', 'updated_at']
