import logging

from django.db import transaction
from django.db.models import F
from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from backend.core.permissions import Capability, HasCapability, requires
from backend.core.utils import create_audit_log
from .models import Stock, StockAdjustment
from .serializers import StockSerializer, StockAdjustmentSerializer

logger = logging.getLogger(__name__)


class InsufficientStock(Exception):
    pass


# Stock views (read-only)
@requires(Capability.INVENTORY_VIEW)
@api_view(['GET'])
@permission_classes([IsAuthenticated, HasCapability])
def stock_list(request):
    """List stock entries with optional filtering"""
    queryset = Stock.objects.select_related('product', 'store')
    product_id = request.query_params.get('product_id', None)
    store_id = request.query_params.get('store_id', None)

    if product_id:
        queryset = queryset.filter(product_id=product_id)
    if store_id:
        queryset = queryset.filter(store_id=store_id)

    serializer = StockSerializer(queryset.order_by('product__name', 'store__name'), many=True)
    return Response(serializer.data)


@requires(Capability.INVENTORY_VIEW)
@api_view(['GET'])
@permission_classes([IsAuthenticated, HasCapability])
def stock_low(request):
    """Stock entries at or below the product's low stock threshold"""
    stocks = Stock.objects.select_related('product', 'store').filter(
        product__low_stock_threshold__gt=0,
        quantity__lte=F('product__low_stock_threshold'),
    )
    store_id = request.query_params.get('store_id', None)
    if store_id:
        stocks = stocks.filter(store_id=store_id)
    serializer = StockSerializer(stocks, many=True)
    return Response(serializer.data)


def apply_adjustment(adjustment):
    """
    Apply a saved adjustment to the Stock row of its product/store.
    Stock out is a conditional decrement and never drives quantity below 0.
    """
    stock, _ = Stock.objects.get_or_create(
        product=adjustment.product,
        store=adjustment.store,
        defaults={'quantity': 0},
    )
    if adjustment.adjustment_type == 'in':
        Stock.objects.filter(pk=stock.pk).update(quantity=F('quantity') + adjustment.quantity)
    else:
        updated = Stock.objects.filter(
            pk=stock.pk, quantity__gte=adjustment.quantity
        ).update(quantity=F('quantity') - adjustment.quantity)
        if not updated:
            raise InsufficientStock(
                f"Only {stock.quantity} of {adjustment.product.sku} on hand at {adjustment.store.code}"
            )
    stock.refresh_from_db(fields=['quantity'])
    return stock


# StockAdjustment views
@requires(GET=Capability.INVENTORY_VIEW, POST=Capability.INVENTORY_RESTOCK)
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, HasCapability])
def stock_adjustment_list_create(request):
    """List stock adjustments or record a new one (restock or correction)"""
    if request.method == 'GET':
        adjustments = StockAdjustment.objects.select_related('product', 'created_by')
        product_id = request.query_params.get('product_id', None)
        if product_id:
            adjustments = adjustments.filter(product_id=product_id)
        serializer = StockAdjustmentSerializer(adjustments, many=True)
        return Response(serializer.data)

    serializer = StockAdjustmentSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        with transaction.atomic():
            adjustment = serializer.save(created_by=request.user)
            stock = apply_adjustment(adjustment)
    except InsufficientStock as e:
        return Response({'error': 'Insufficient stock', 'message': str(e)}, status=status.HTTP_400_BAD_REQUEST)

    logger.info(
        "Stock %s %s x %s at %s -> %s",
        adjustment.adjustment_type, adjustment.quantity, adjustment.product.sku,
        adjustment.store.code, stock.quantity,
    )
    create_audit_log(
        request=request,
        action='stock_adjust',
        model_name='StockAdjustment',
        object_id=adjustment.id,
        object_name=adjustment.product.name,
        object_reference=adjustment.product.sku,
        sku=adjustment.product.sku,
        changes={
            'adjustment_type': adjustment.adjustment_type,
            'quantity': adjustment.quantity,
            'reason': adjustment.reason,
            'notes': adjustment.notes,
            'store': adjustment.store.code,
            'new_stock_quantity': stock.quantity,
        }
    )
    return Response(StockAdjustmentSerializer(adjustment).data, status=status.HTTP_201_CREATED)


@requires(Capability.INVENTORY_VIEW)
@api_view(['GET'])
@permission_classes([IsAuthenticated, HasCapability])
def stock_adjustment_detail(request, pk):
    """Retrieve a stock adjustment (adjustments are immutable once applied)"""
    adjustment = get_object_or_404(StockAdjustment, pk=pk)
    serializer = StockAdjustmentSerializer(adjustment)
    return Response(serializer.data)
