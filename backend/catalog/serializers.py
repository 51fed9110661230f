from rest_framework import serializers
from .models import Category, Product


class CategorySerializer(serializers.ModelSerializer):
    class Meta:
        model = Category
        fields = ['id', 'name', 'description', 'is_active', 'created_at', 'updated_at']


class ProductSerializer(serializers.ModelSerializer):
    sku = serializers.CharField(required=False, allow_blank=True, max_length=100)
    category_name = serializers.CharField(source='category.name', read_only=True)
    on_hand = serializers.SerializerMethodField()

    class Meta:
        model = Product
        fields = ['id', 'name', 'sku', 'category', 'category_name', 'description', 'price',
                  'low_stock_threshold', 'image', 'is_active', 'on_hand', 'created_at', 'updated_at']

    def get_on_hand(self, obj):
        """Annotated stock total (see catalog views); None when not annotated"""
        value = getattr(obj, 'annotated_on_hand', None)
        return int(value) if value is not None else None

    def validate_price(self, value):
        if value < 0:
            raise serializers.ValidationError('Price cannot be negative')
        return value

    def validate_sku(self, value):
        value = (value or '').strip().upper()
        if value:
            queryset = Product.objects.filter(sku__iexact=value)
            if self.instance is not None:
                queryset = queryset.exclude(pk=self.instance.pk)
            if queryset.exists():
                raise serializers.ValidationError('A product with this SKU already exists')
        return value

    def create(self, validated_data):
        if not validated_data.get('sku'):
            from .utils import generate_unique_sku
            validated_data['sku'] = generate_unique_sku(
                validated_data.get('name'), validated_data.get('category')
            )
        return super().create(validated_data)
