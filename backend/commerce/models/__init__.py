from .users import User, SessionToken
from .catalog import Category, Product, StockReservation
from .orders import Order, OrderLine
from .restock import RestockRequest
from .credit import CreditTransaction, CreditPayment
from .audit import AuditEvent

__all__ = [
    'User', 'SessionToken',
    'Category', 'Product', 'StockReservation',
    'Order', 'OrderLine',
    'RestockRequest',
    'CreditTransaction', 'CreditPayment',
    'AuditEvent',
]
