from django.db.models import Q
from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from backend.core.permissions import Capability, HasCapability, requires
from backend.core.utils import create_audit_log
from .models import Customer
from .serializers import CustomerSerializer
from .services import list_customer_names

CUSTOMER_CAPABILITIES = {
    'GET': Capability.CUSTOMERS_VIEW,
    '*': Capability.CUSTOMERS_MANAGE,
}


@requires(**CUSTOMER_CAPABILITIES)
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, HasCapability])
def customer_list_create(request):
    """List all customers or create a new customer"""
    if request.method == 'GET':
        search = request.query_params.get('search', None)
        queryset = Customer.objects.all().order_by('-created_at')
        if search:
            queryset = queryset.filter(
                Q(name__icontains=search) | Q(company__icontains=search) | Q(phone__icontains=search)
            )
        if request.query_params.get('active') in ('1', 'true'):
            queryset = queryset.filter(is_active=True)
        serializer = CustomerSerializer(queryset, many=True)
        return Response(serializer.data)
    else:
        serializer = CustomerSerializer(data=request.data)
        if serializer.is_valid():
            customer = serializer.save()
            create_audit_log(
                request=request,
                action='create',
                model_name='Customer',
                object_id=customer.id,
                object_name=customer.display_name,
                changes={'name': customer.name, 'company': customer.company},
            )
            return Response(serializer.data, status=status.HTTP_201_CREATED)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@requires(**CUSTOMER_CAPABILITIES)
@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated, HasCapability])
def customer_detail(request, pk):
    """Retrieve, update or deactivate a customer"""
    customer = get_object_or_404(Customer, pk=pk)

    if request.method == 'GET':
        serializer = CustomerSerializer(customer)
        return Response(serializer.data)
    elif request.method == 'PATCH':
        serializer = CustomerSerializer(customer, data=request.data, partial=True)
        if serializer.is_valid():
            serializer.save()
            return Response(serializer.data)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    else:  # DELETE
        # Past orders keep the label as text, so customers are only deactivated
        customer.is_active = False
        customer.save(update_fields=['is_active', 'updated_at'])
        create_audit_log(
            request=request,
            action='delete',
            model_name='Customer',
            object_id=customer.id,
            object_name=customer.display_name,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


@requires(Capability.CUSTOMERS_VIEW)
@api_view(['GET'])
@permission_classes([IsAuthenticated, HasCapability])
def customer_names(request):
    """Distinct customer labels used by the POS customer picker"""
    return Response({'names': list_customer_names()})
