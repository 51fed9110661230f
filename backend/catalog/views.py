import logging

from django.core.paginator import Paginator
from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from backend.core.permissions import Capability, HasCapability, requires
from backend.core.utils import create_audit_log
from .filters import ProductFilter
from .models import Category, Product
from .serializers import CategorySerializer, ProductSerializer
from .utils import annotate_on_hand

logger = logging.getLogger(__name__)

CATALOG_CAPABILITIES = {
    'GET': Capability.CATALOG_VIEW,
    '*': Capability.CATALOG_MANAGE,
}


# Category views
@requires(**CATALOG_CAPABILITIES)
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, HasCapability])
def category_list_create(request):
    """List all categories or create a new category"""
    if request.method == 'GET':
        categories = Category.objects.all()
        if request.query_params.get('active') in ('1', 'true'):
            categories = categories.filter(is_active=True)
        serializer = CategorySerializer(categories, many=True)
        return Response(serializer.data)
    else:
        serializer = CategorySerializer(data=request.data)
        if serializer.is_valid():
            category = serializer.save()
            create_audit_log(
                request=request,
                action='create',
                model_name='Category',
                object_id=category.id,
                object_name=category.name,
                changes={'name': category.name},
            )
            return Response(serializer.data, status=status.HTTP_201_CREATED)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@requires(**CATALOG_CAPABILITIES)
@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated, HasCapability])
def category_detail(request, pk):
    """Retrieve, update or delete a category"""
    category = get_object_or_404(Category, pk=pk)

    if request.method == 'GET':
        serializer = CategorySerializer(category)
        return Response(serializer.data)
    elif request.method == 'PATCH':
        serializer = CategorySerializer(category, data=request.data, partial=True)
        if serializer.is_valid():
            serializer.save()
            create_audit_log(
                request=request,
                action='update',
                model_name='Category',
                object_id=category.id,
                object_name=category.name,
                changes=dict(request.data),
            )
            return Response(serializer.data)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    else:  # DELETE
        create_audit_log(
            request=request,
            action='delete',
            model_name='Category',
            object_id=category.id,
            object_name=category.name,
        )
        category.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)


# Product views
@requires(**CATALOG_CAPABILITIES)
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, HasCapability])
def product_list_create(request):
    """List products (filtered, paginated, with on-hand totals) or create a product"""
    if request.method == 'GET':
        queryset = annotate_on_hand(
            Product.objects.select_related('category'),
            store_id=request.query_params.get('store'),
        )
        filterset = ProductFilter(request.query_params, queryset=queryset)
        if not filterset.is_valid():
            return Response(filterset.errors, status=status.HTTP_400_BAD_REQUEST)
        queryset = filterset.qs.order_by('name', 'id')

        try:
            page = max(int(request.query_params.get('page', 1)), 1)
            limit = min(max(int(request.query_params.get('limit', 50)), 1), 200)
        except ValueError:
            return Response({'error': 'page and limit must be integers'}, status=status.HTTP_400_BAD_REQUEST)

        paginator = Paginator(queryset, limit)
        page_obj = paginator.get_page(page)
        serializer = ProductSerializer(page_obj, many=True)
        return Response({
            'results': serializer.data,
            'count': paginator.count,
            'next': page_obj.next_page_number() if page_obj.has_next() else None,
            'previous': page_obj.previous_page_number() if page_obj.has_previous() else None,
            'page': page_obj.number,
            'page_size': limit,
            'total_pages': paginator.num_pages,
        })
    else:  # POST
        serializer = ProductSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        product = serializer.save()

        create_audit_log(
            request=request,
            action='create',
            model_name='Product',
            object_id=product.id,
            object_name=product.name,
            object_reference=product.sku,
            sku=product.sku,
            changes={'name': product.name, 'sku': product.sku, 'price': str(product.price)},
        )
        logger.info("Product %s created by %s", product.sku, request.user)
        return Response(ProductSerializer(product).data, status=status.HTTP_201_CREATED)


@requires(**CATALOG_CAPABILITIES)
@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated, HasCapability])
def product_detail(request, pk):
    """Retrieve, update or deactivate a product"""
    product = get_object_or_404(annotate_on_hand(Product.objects.select_related('category')), pk=pk)

    if request.method == 'GET':
        return Response(ProductSerializer(product).data)
    elif request.method == 'PATCH':
        old_price = product.price
        serializer = ProductSerializer(product, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        product = serializer.save()

        changes = {key: str(value) for key, value in serializer.validated_data.items()}
        action = 'update'
        if 'price' in serializer.validated_data and product.price != old_price:
            action = 'price_change'
            changes['old_price'] = str(old_price)
        create_audit_log(
            request=request,
            action=action,
            model_name='Product',
            object_id=product.id,
            object_name=product.name,
            object_reference=product.sku,
            sku=product.sku,
            changes=changes,
        )
        return Response(ProductSerializer(product).data)
    else:  # DELETE
        # Order lines keep their own snapshot, so products are only deactivated
        product.is_active = False
        product.save(update_fields=['is_active', 'updated_at'])
        create_audit_log(
            request=request,
            action='delete',
            model_name='Product',
            object_id=product.id,
            object_name=product.name,
            object_reference=product.sku,
            sku=product.sku,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


@requires(Capability.CATALOG_VIEW)
@api_view(['GET'])
@permission_classes([IsAuthenticated, HasCapability])
def product_by_sku(request, sku):
    """Exact (case-insensitive) SKU lookup"""
    product = get_object_or_404(
        annotate_on_hand(Product.objects.select_related('category')),
        sku__iexact=sku.strip(),
    )
    return Response(ProductSerializer(product).data)
