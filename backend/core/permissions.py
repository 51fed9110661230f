"""
Capability-based authorization.

Roles are Django auth groups. Each role grants a fixed set of capabilities,
and views declare the capability they require. The resolved
capabilities travel with the request in a RequestContext instead of being
looked up from global state.
"""
import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from rest_framework.permissions import BasePermission

from .utils import get_client_ip

logger = logging.getLogger(__name__)


class Capability:
    POS_SELL = 'pos.sell'
    POS_HOLD = 'pos.hold'
    POS_MANAGE_SESSIONS = 'pos.manage_sessions'
    CATALOG_VIEW = 'catalog.view'
    CATALOG_MANAGE = 'catalog.manage'
    INVENTORY_VIEW = 'inventory.view'
    INVENTORY_RESTOCK = 'inventory.restock'
    ORDERS_VIEW = 'orders.view'
    ORDERS_MANAGE = 'orders.manage'
    CUSTOMERS_VIEW = 'customers.view'
    CUSTOMERS_MANAGE = 'customers.manage'
    AUDIT_VIEW = 'audit.view'

    @classmethod
    def all(cls) -> FrozenSet[str]:
        return frozenset(
            value for name, value in vars(cls).items()
            if name.isupper() and isinstance(value, str)
        )


_CASHIER = frozenset({
    Capability.POS_SELL,
    Capability.POS_HOLD,
    Capability.CATALOG_VIEW,
    Capability.INVENTORY_VIEW,
    Capability.CUSTOMERS_VIEW,
    Capability.ORDERS_VIEW,
})

_STORE_MANAGER = _CASHIER | frozenset({
    Capability.POS_MANAGE_SESSIONS,
    Capability.CATALOG_MANAGE,
    Capability.INVENTORY_RESTOCK,
    Capability.ORDERS_MANAGE,
    Capability.CUSTOMERS_MANAGE,
})

_SALES = frozenset({
    Capability.CATALOG_VIEW,
    Capability.CUSTOMERS_VIEW,
    Capability.CUSTOMERS_MANAGE,
    Capability.ORDERS_VIEW,
})

ROLE_CAPABILITIES = {
    'Admin': Capability.all(),
    'ManagingDirector': Capability.all(),
    'GeneralManager': _STORE_MANAGER | frozenset({Capability.AUDIT_VIEW}),
    'StoreManager': _STORE_MANAGER,
    'Cashier': _CASHIER,
    'SalesExecutive': _SALES | frozenset({Capability.ORDERS_MANAGE}),
    'SalesAgent': _SALES,
    'ProcurementOfficer': frozenset({
        Capability.CATALOG_VIEW,
        Capability.INVENTORY_VIEW,
        Capability.INVENTORY_RESTOCK,
    }),
}


def capabilities_for(user) -> FrozenSet[str]:
    """Union of the capabilities of every role (group) the user belongs to"""
    if user is None or not user.is_authenticated:
        return frozenset()
    if user.is_superuser:
        return Capability.all()
    granted = set()
    for role in user.groups.values_list('name', flat=True):
        granted |= ROLE_CAPABILITIES.get(role, frozenset())
    return frozenset(granted)


@dataclass(frozen=True)
class RequestContext:
    """Who is acting, and what they may do"""
    user: object
    capabilities: FrozenSet[str] = field(default_factory=frozenset)
    ip_address: Optional[str] = None

    @classmethod
    def from_request(cls, request):
        cached = getattr(request, '_request_context', None)
        if cached is not None:
            return cached
        context = cls(
            user=request.user,
            capabilities=capabilities_for(request.user),
            ip_address=get_client_ip(request),
        )
        request._request_context = context
        return context

    def can(self, capability) -> bool:
        return capability in self.capabilities


class HasCapability(BasePermission):
    """Grants access when the caller holds the view's ``required_capability``"""
    message = 'You do not have the capability required for this action.'

    def has_permission(self, request, view):
        required = getattr(view, 'required_capability', None)
        if isinstance(required, dict):
            required = required.get(request.method, required.get('*'))
        if required is None:
            return True
        context = RequestContext.from_request(request)
        allowed = context.can(required)
        if not allowed:
            logger.info("Denied %s to user=%s (missing %s)", request.path, request.user, required)
        return allowed


def requires(capability=None, **per_method):
    """
    Decorator for function-based API views. Apply it above @api_view so the
    generated view class carries the capability checked by HasCapability.

    Either one capability for every method, or one per HTTP method:
        @requires(GET=Capability.CATALOG_VIEW, POST=Capability.CATALOG_MANAGE)
    """
    def decorator(view):
        view.cls.required_capability = per_method or capability
        return view
    return decorator
