import logging
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django.shortcuts import get_object_or_404
from .models import Store
from .serializers import StoreSerializer

logger = logging.getLogger('backend.locations')


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def store_list_create(request):
    """List stores or create a new store (create requires admin)"""
    if request.method == 'GET':
        stores = Store.objects.all().order_by('name')
        if request.query_params.get('active') == 'true':
            stores = stores.filter(is_active=True)
        return Response(StoreSerializer(stores, many=True).data)

    if not request.user.is_staff:
        return Response({'error': 'Permission denied'}, status=status.HTTP_403_FORBIDDEN)
    serializer = StoreSerializer(data=request.data)
    if serializer.is_valid():
        store = serializer.save()
        logger.info("Store created: %s (%s)", store.name, store.code)
        return Response(serializer.data, status=status.HTTP_201_CREATED)
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def store_detail(request, pk):
    """Retrieve, update or deactivate a store"""
    store = get_object_or_404(Store, pk=pk)

    if request.method == 'GET':
        return Response(StoreSerializer(store).data)

    if not request.user.is_staff:
        return Response({'error': 'Permission denied'}, status=status.HTTP_403_FORBIDDEN)

    if request.method == 'PATCH':
        serializer = StoreSerializer(store, data=request.data, partial=True)
        if serializer.is_valid():
            serializer.save()
            return Response(serializer.data)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    # Stores carry stock and sales history, so DELETE only deactivates
    store.is_active = False
    store.save(update_fields=['is_active', 'updated_at'])
    return Response(status=status.HTTP_204_NO_CONTENT)
