from rest_framework import serializers
from .models import POSSession, Order, OrderItem


class POSSessionSerializer(serializers.ModelSerializer):
    store_name = serializers.CharField(source='store.name', read_only=True)
    username = serializers.CharField(source='user.username', read_only=True)

    class Meta:
        model = POSSession
        fields = ['id', 'session_number', 'store', 'store_name', 'user', 'username', 'status',
                  'opened_at', 'closed_at']
        read_only_fields = ['session_number', 'user', 'status', 'opened_at', 'closed_at']

    def validate_store(self, value):
        if not value.is_active:
            raise serializers.ValidationError('Store is not active')
        return value


class CatalogItemSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    name = serializers.CharField()
    sku = serializers.CharField()
    category = serializers.CharField()
    unit_price = serializers.DecimalField(max_digits=14, decimal_places=2)
    on_hand = serializers.IntegerField()


class CartLineSerializer(serializers.Serializer):
    item_id = serializers.IntegerField(source='item.id')
    name = serializers.CharField(source='item.name')
    sku = serializers.CharField(source='item.sku')
    unit_price = serializers.DecimalField(source='item.unit_price', max_digits=14, decimal_places=2)
    on_hand = serializers.IntegerField(source='item.on_hand')
    quantity = serializers.IntegerField()
    line_total = serializers.DecimalField(max_digits=14, decimal_places=2)


class CartSerializer(serializers.Serializer):
    token = serializers.CharField()
    customer = serializers.CharField()
    lines = CartLineSerializer(many=True)
    item_count = serializers.SerializerMethodField()
    subtotal = serializers.DecimalField(max_digits=14, decimal_places=2)
    tax_rate = serializers.DecimalField(max_digits=5, decimal_places=4)
    tax = serializers.DecimalField(max_digits=14, decimal_places=2)
    total = serializers.DecimalField(max_digits=14, decimal_places=2)

    def get_item_count(self, cart):
        return sum(line.quantity for line in cart)


class ReceiptLineSerializer(serializers.Serializer):
    description = serializers.CharField()
    sku = serializers.CharField()
    quantity = serializers.IntegerField()
    unit_price = serializers.DecimalField(max_digits=14, decimal_places=2)
    line_total = serializers.DecimalField(max_digits=14, decimal_places=2)


class SaleReceiptSerializer(serializers.Serializer):
    order_id = serializers.IntegerField()
    order_number = serializers.CharField()
    customer = serializers.CharField()
    payment_method = serializers.CharField(source='payment_method_label')
    lines = ReceiptLineSerializer(many=True)
    subtotal = serializers.DecimalField(max_digits=14, decimal_places=2)
    tax = serializers.DecimalField(max_digits=14, decimal_places=2)
    total = serializers.DecimalField(max_digits=14, decimal_places=2)
    currency = serializers.CharField()
    issued_at = serializers.DateTimeField()


class OrderItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderItem
        fields = ['id', 'product', 'description', 'sku', 'quantity', 'unit_price', 'line_total']


class OrderSerializer(serializers.ModelSerializer):
    items = OrderItemSerializer(many=True, read_only=True)
    store_name = serializers.CharField(source='store.name', read_only=True)
    created_by_username = serializers.CharField(source='created_by.username', read_only=True)

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'customer', 'date', 'status', 'payment_method',
            'subtotal', 'tax_amount', 'total', 'store', 'store_name', 'session',
            'created_by', 'created_by_username', 'items', 'created_at', 'updated_at'
        ]


class OrderStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Order.STATUS_CHOICES)
