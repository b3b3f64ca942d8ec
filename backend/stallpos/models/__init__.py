from .auth import User, SessionToken
from .inventory import Product
from .stalls import Stall
from .sales import Order, OrderItem, Payment
from .settings import Configuration, Terminal, configuration_linked_users

__all__ = [
    'User', 'SessionToken',
    'Product',
    'Stall',
    'Order', 'OrderItem', 'Payment',
    'Configuration', 'Terminal', 'configuration_linked_users',
]
