import logging
import uuid

from django.conf import settings
from django.db import transaction
from django.db.models import Q
from django.http import HttpResponse
from django.shortcuts import get_object_or_404
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import APIException, PermissionDenied
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from backend.core.permissions import Capability, HasCapability, RequestContext, requires
from backend.core.utils import create_audit_log
from .exceptions import CatalogLoadError, CheckoutInProgress
from .models import POSSession, Order
from .receipt import render_image, render_text
from .serializers import (
    POSSessionSerializer, CatalogItemSerializer, CartSerializer, SaleReceiptSerializer,
    OrderSerializer, OrderStatusSerializer,
)
from .terminal import Terminal

logger = logging.getLogger(__name__)

WARNING_TITLES = {
    'out_of_stock': 'Out of stock',
    'stock_limit': 'Stock limit reached',
    'empty_cart': 'Cart is empty',
    'unknown_item': 'Item not found',
    'invalid_payment_method': 'Invalid payment method',
    'sale_completed': 'Sale already completed',
}


class SessionClosed(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'This POS session is closed.'
    default_code = 'session_closed'


def warning_response(warning):
    return Response({
        'error': WARNING_TITLES.get(warning.code, 'Not allowed'),
        'message': warning.message,
        'code': warning.code,
    }, status=status.HTTP_400_BAD_REQUEST)


def catalog_error_response(error):
    return Response({
        'error': 'Catalog unavailable',
        'message': str(error),
        'code': 'catalog_load_failed',
    }, status=status.HTTP_502_BAD_GATEWAY)


def generate_session_number():
    return f"POS-{timezone.now().strftime('%Y%m%d')}-{str(uuid.uuid4())[:8].upper()}"


def open_terminal(request, pk, for_update=False, require_open=True):
    """
    Load the session as a Terminal for the caller. Cashiers only reach their
    own sessions; session managers reach any. ``for_update`` locks the row
    (callers must be inside transaction.atomic).
    """
    context = RequestContext.from_request(request)
    queryset = POSSession.objects.select_related('store', 'user')
    if for_update:
        queryset = queryset.select_for_update(of=('self',))
    session = get_object_or_404(queryset, pk=pk)
    if session.user_id != context.user.id and not context.can(Capability.POS_MANAGE_SESSIONS):
        raise PermissionDenied('This POS session belongs to another user.')
    if require_open and not session.is_open:
        raise SessionClosed()
    return Terminal(session, context)


def terminal_payload(terminal):
    return {
        'session': terminal.session.id,
        'session_number': terminal.session.session_number,
        'store': terminal.session.store_id,
        'status': terminal.session.status,
        'checkout_state': terminal.checkout.state.value,
        'checkout_error': terminal.checkout.error,
        'cart': CartSerializer(terminal.cart).data,
        'held': held_payload(terminal),
    }


def held_payload(terminal):
    return [
        {'index': index, **CartSerializer(cart).data}
        for index, cart in enumerate(terminal.held)
    ]


def audit(request, terminal, action, changes=None, sku=None):
    session = terminal.session
    create_audit_log(
        request=request,
        action=action,
        model_name='POSSession',
        object_id=session.id,
        object_name=session.store.name,
        object_reference=session.session_number,
        sku=sku,
        changes=changes,
    )


def parse_int(value, name):
    try:
        return int(value), None
    except (TypeError, ValueError):
        return None, Response(
            {'error': f'{name} must be an integer'}, status=status.HTTP_400_BAD_REQUEST
        )


# POSSession views
@requires(Capability.POS_SELL)
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, HasCapability])
def pos_session_list_create(request):
    """List POS sessions or open one at a store (an already open one is reused)"""
    context = RequestContext.from_request(request)
    if request.method == 'GET':
        sessions = POSSession.objects.select_related('store', 'user')
        if not context.can(Capability.POS_MANAGE_SESSIONS):
            sessions = sessions.filter(user=request.user)
        status_filter = request.query_params.get('status', None)
        if status_filter:
            sessions = sessions.filter(status=status_filter)
        store_id = request.query_params.get('store', None)
        if store_id:
            sessions = sessions.filter(store_id=store_id)
        serializer = POSSessionSerializer(sessions, many=True)
        return Response(serializer.data)

    serializer = POSSessionSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    store = serializer.validated_data['store']

    existing = POSSession.objects.filter(user=request.user, store=store, status='open').first()
    if existing is not None:
        return Response(POSSessionSerializer(existing).data, status=status.HTTP_200_OK)

    session = serializer.save(user=request.user, session_number=generate_session_number())
    create_audit_log(
        request=request,
        action='session_open',
        model_name='POSSession',
        object_id=session.id,
        object_name=store.name,
        object_reference=session.session_number,
    )
    logger.info("POS session %s opened at %s by %s", session.session_number, store.code, request.user)
    return Response(POSSessionSerializer(session).data, status=status.HTTP_201_CREATED)


@requires(Capability.POS_SELL)
@api_view(['GET'])
@permission_classes([IsAuthenticated, HasCapability])
def pos_session_detail(request, pk):
    """Session with its current cart, held carts and checkout state"""
    terminal = open_terminal(request, pk, require_open=False)
    data = POSSessionSerializer(terminal.session).data
    data['terminal'] = terminal_payload(terminal)
    return Response(data)


@requires(Capability.POS_SELL)
@api_view(['POST'])
@permission_classes([IsAuthenticated, HasCapability])
def pos_session_close(request, pk):
    """Close a POS session; held carts are dropped with it"""
    with transaction.atomic():
        terminal = open_terminal(request, pk, for_update=True)
        if terminal.checkout.is_busy:
            return Response({'error': 'Checkout in progress'}, status=status.HTTP_409_CONFLICT)
        held_count = len(terminal.held)
        terminal.close()
    audit(request, terminal, 'session_close', changes={'held_carts_dropped': held_count})
    return Response(POSSessionSerializer(terminal.session).data)


# Catalog views
@requires(Capability.POS_SELL)
@api_view(['GET'])
@permission_classes([IsAuthenticated, HasCapability])
def session_catalog(request, pk):
    """Search the session's catalog snapshot by name or SKU"""
    terminal = open_terminal(request, pk)
    try:
        items = terminal.search(request.query_params.get('search', ''))
    except CatalogLoadError as e:
        return catalog_error_response(e)
    return Response({
        'results': CatalogItemSerializer(items, many=True).data,
        'count': len(items),
    })


@requires(Capability.POS_SELL)
@api_view(['POST'])
@permission_classes([IsAuthenticated, HasCapability])
def session_catalog_refresh(request, pk):
    """Reload the catalog snapshot (stock and prices) from the database"""
    with transaction.atomic():
        terminal = open_terminal(request, pk, for_update=True)
        try:
            catalog = terminal.load_catalog()
        except CatalogLoadError as e:
            return catalog_error_response(e)
        terminal.save()
    return Response({'count': len(catalog), 'customers': len(catalog.customer_names)})


@requires(Capability.POS_SELL)
@api_view(['GET'])
@permission_classes([IsAuthenticated, HasCapability])
def session_customers(request, pk):
    """Customer labels for the sale, walk-in first"""
    terminal = open_terminal(request, pk)
    try:
        options = terminal.customer_options()
    except CatalogLoadError as e:
        return catalog_error_response(e)
    return Response({'customers': options, 'selected': terminal.cart.customer})


# Cart views
@requires(Capability.POS_SELL)
@api_view(['GET'])
@permission_classes([IsAuthenticated, HasCapability])
def session_cart(request, pk):
    terminal = open_terminal(request, pk)
    return Response(terminal_payload(terminal))


def run_cart_operation(request, pk, operation, action, changes=None, sku=None):
    """Apply ``operation(terminal)`` under a row lock, save, audit and answer with the terminal state"""
    with transaction.atomic():
        terminal = open_terminal(request, pk, for_update=True)
        try:
            warning = operation(terminal)
        except CatalogLoadError as e:
            return catalog_error_response(e)
        if warning is not None:
            logger.debug("Cart %s rejected %s: %s", terminal.cart.token, action, warning.code)
            return warning_response(warning)
        terminal.save()
    audit(request, terminal, action, changes=changes, sku=sku)
    return Response(terminal_payload(terminal))


@requires(Capability.POS_SELL)
@api_view(['POST'])
@permission_classes([IsAuthenticated, HasCapability])
def cart_add_item(request, pk):
    """Add one unit of a catalog item"""
    item_id, error = parse_int(request.data.get('item_id'), 'item_id')
    if error:
        return error
    return run_cart_operation(
        request, pk, lambda terminal: terminal.add_item(item_id),
        'cart_add', changes={'item_id': item_id},
    )


@requires(Capability.POS_SELL)
@api_view(['POST'])
@permission_classes([IsAuthenticated, HasCapability])
def cart_scan(request, pk):
    """Add one unit of the item with the scanned SKU"""
    sku = (request.data.get('sku') or '').strip()
    if not sku:
        return Response({'error': 'sku is required'}, status=status.HTTP_400_BAD_REQUEST)
    return run_cart_operation(
        request, pk, lambda terminal: terminal.scan(sku),
        'barcode_scan', changes={'sku': sku}, sku=sku,
    )


@requires(Capability.POS_SELL)
@api_view(['PATCH', 'DELETE'])
@permission_classes([IsAuthenticated, HasCapability])
def cart_item_update(request, pk, item_id):
    """PATCH changes a line by ``delta`` (removing it at zero); DELETE removes it"""
    if request.method == 'DELETE':
        return run_cart_operation(
            request, pk, lambda terminal: terminal.remove_item(item_id),
            'cart_remove', changes={'item_id': item_id},
        )
    delta, error = parse_int(request.data.get('delta'), 'delta')
    if error:
        return error
    return run_cart_operation(
        request, pk, lambda terminal: terminal.adjust_quantity(item_id, delta),
        'cart_update', changes={'item_id': item_id, 'delta': delta},
    )


@requires(Capability.POS_SELL)
@api_view(['POST'])
@permission_classes([IsAuthenticated, HasCapability])
def cart_clear(request, pk):
    return run_cart_operation(request, pk, lambda terminal: terminal.clear_cart(), 'cart_clear')


@requires(Capability.POS_SELL)
@api_view(['PATCH'])
@permission_classes([IsAuthenticated, HasCapability])
def cart_customer(request, pk):
    """Set the customer label of the sale (blank means walk-in)"""
    customer = request.data.get('customer', '')
    if not isinstance(customer, str):
        return Response({'error': 'customer must be a string'}, status=status.HTTP_400_BAD_REQUEST)
    return run_cart_operation(
        request, pk, lambda terminal: terminal.set_customer(customer),
        'cart_update', changes={'customer': customer},
    )


# Held cart views
@requires(Capability.POS_HOLD)
@api_view(['GET'])
@permission_classes([IsAuthenticated, HasCapability])
def held_list(request, pk):
    terminal = open_terminal(request, pk)
    return Response(held_payload(terminal))


@requires(Capability.POS_HOLD)
@api_view(['POST'])
@permission_classes([IsAuthenticated, HasCapability])
def cart_hold(request, pk):
    """Park the active cart and start an empty one"""
    return run_cart_operation(request, pk, lambda terminal: terminal.hold(), 'cart_hold')


@requires(Capability.POS_HOLD)
@api_view(['POST'])
@permission_classes([IsAuthenticated, HasCapability])
def held_resume(request, pk, index):
    """Make a held cart active. The current cart is discarded, not held."""
    try:
        return run_cart_operation(
            request, pk, lambda terminal: terminal.resume(index),
            'cart_resume', changes={'index': index},
        )
    except IndexError as e:
        return Response({'error': str(e)}, status=status.HTTP_404_NOT_FOUND)


@requires(Capability.POS_HOLD)
@api_view(['DELETE'])
@permission_classes([IsAuthenticated, HasCapability])
def held_discard(request, pk, index):
    try:
        return run_cart_operation(
            request, pk, lambda terminal: terminal.discard(index),
            'cart_discard', changes={'index': index},
        )
    except IndexError as e:
        return Response({'error': str(e)}, status=status.HTTP_404_NOT_FOUND)


# Checkout views
@requires(Capability.POS_SELL)
@api_view(['POST'])
@permission_classes([IsAuthenticated, HasCapability])
def checkout(request, pk):
    """Create the order, decrement stock and return the receipt"""
    payment_method = request.data.get('payment_method', '')
    with transaction.atomic():
        terminal = open_terminal(request, pk, for_update=True)
        try:
            result = terminal.submit_checkout(payment_method)
        except CheckoutInProgress as e:
            return Response({'error': 'Checkout in progress', 'message': str(e)}, status=status.HTTP_409_CONFLICT)
        except CatalogLoadError as e:
            return catalog_error_response(e)
        if result.warning is not None:
            return warning_response(result.warning)
        terminal.save()

    payload = terminal_payload(terminal)
    if not result.ok:
        audit(request, terminal, 'checkout_failed', changes={
            'code': result.error_code, 'message': result.error, 'cart': terminal.cart.token,
        })
        payload.update({
            'error': 'Payment failed',
            'message': f"Payment failed: {result.error}",
            'code': result.error_code,
        })
        failure_status = (
            status.HTTP_409_CONFLICT if result.error_code == 'stock_decrement_failed'
            else status.HTTP_502_BAD_GATEWAY
        )
        return Response(payload, status=failure_status)

    receipt = result.receipt
    if not result.replayed:
        audit(
            request, terminal, 'cart_checkout',
            changes={
                'order_number': receipt.order_number,
                'payment_method': receipt.payment_method,
                'total': str(receipt.total),
            },
            sku=', '.join(line.sku for line in receipt.lines)[:1000],
        )
    payload['receipt'] = SaleReceiptSerializer(receipt).data
    return Response(payload, status=status.HTTP_200_OK if result.replayed else status.HTTP_201_CREATED)


@requires(Capability.POS_SELL)
@api_view(['GET'])
@permission_classes([IsAuthenticated, HasCapability])
def receipt(request, pk):
    """
    Last sale's receipt. ``?render=text`` answers plain text, ``?render=image``
    a PNG data URL; the default is JSON with the text included.
    """
    with transaction.atomic():
        terminal = open_terminal(request, pk, for_update=True, require_open=False)
        sale_receipt = terminal.show_receipt()
        if sale_receipt is None:
            return Response({'error': 'No receipt', 'message': 'No completed sale to show.'},
                            status=status.HTTP_404_NOT_FOUND)
        terminal.save()

    header = settings.POS_RECEIPT_HEADER
    render = request.query_params.get('render', 'json')
    if render == 'text':
        return HttpResponse(render_text(sale_receipt, header=header), content_type='text/plain; charset=utf-8')
    if render == 'image':
        return Response({
            'order_number': sale_receipt.order_number,
            'image': render_image(sale_receipt, header=header),
        })
    data = SaleReceiptSerializer(sale_receipt).data
    data['text'] = render_text(sale_receipt, header=header)
    return Response(data)


@requires(Capability.POS_SELL)
@api_view(['POST'])
@permission_classes([IsAuthenticated, HasCapability])
def new_sale(request, pk):
    """Dismiss the last checkout outcome; a completed sale's cart is cleared"""
    with transaction.atomic():
        terminal = open_terminal(request, pk, for_update=True)
        try:
            terminal.new_sale()
        except CheckoutInProgress as e:
            return Response({'error': 'Checkout in progress', 'message': str(e)}, status=status.HTTP_409_CONFLICT)
        terminal.save()
    return Response(terminal_payload(terminal))


# Order views
@requires(Capability.ORDERS_VIEW)
@api_view(['GET'])
@permission_classes([IsAuthenticated, HasCapability])
def order_list(request):
    """List orders with optional filtering"""
    queryset = Order.objects.select_related('store', 'created_by').prefetch_related('items')

    status_filter = request.query_params.get('status', None)
    if status_filter:
        queryset = queryset.filter(status=status_filter)
    payment_method = request.query_params.get('payment_method', None)
    if payment_method:
        queryset = queryset.filter(payment_method=payment_method)
    store_id = request.query_params.get('store', None)
    if store_id:
        queryset = queryset.filter(store_id=store_id)
    session_id = request.query_params.get('session', None)
    if session_id:
        queryset = queryset.filter(session_id=session_id)
    date_from = request.query_params.get('date_from', None)
    if date_from:
        queryset = queryset.filter(date__gte=date_from)
    date_to = request.query_params.get('date_to', None)
    if date_to:
        queryset = queryset.filter(date__lte=date_to)
    search = request.query_params.get('search', None)
    if search:
        queryset = queryset.filter(Q(order_number__icontains=search) | Q(customer__icontains=search))

    serializer = OrderSerializer(queryset.order_by('-created_at'), many=True)
    return Response(serializer.data)


@requires(Capability.ORDERS_VIEW)
@api_view(['GET'])
@permission_classes([IsAuthenticated, HasCapability])
def order_detail(request, pk):
    order = get_object_or_404(
        Order.objects.select_related('store', 'created_by').prefetch_related('items'), pk=pk
    )
    return Response(OrderSerializer(order).data)


@requires(Capability.ORDERS_MANAGE)
@api_view(['PATCH'])
@permission_classes([IsAuthenticated, HasCapability])
def order_status_update(request, pk):
    """Move an order to another status (fulfilment happens outside the POS)"""
    order = get_object_or_404(Order, pk=pk)
    serializer = OrderStatusSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    old_status = order.status
    order.status = serializer.validated_data['status']
    order.save(update_fields=['status', 'updated_at'])
    create_audit_log(
        request=request,
        action='order_status',
        model_name='Order',
        object_id=order.id,
        object_name=order.customer,
        object_reference=order.order_number,
        changes={'old_status': old_status, 'new_status': order.status},
    )
    return Response(OrderSerializer(order).data)
