from .auth import User, ROLE_ADMIN, ROLE_CUSTOMER
from .catalog import Product, Batch
from .customers import Customer
from .sales import Sale, Checkout, LineItem, BatchAllocation
from .cart import Cart

__all__ = [
    'User', 'ROLE_ADMIN', 'ROLE_CUSTOMER',
    'Product', 'Batch',
    'Customer',
    'Sale', 'Checkout', 'LineItem', 'BatchAllocation',
    'Cart',
]
