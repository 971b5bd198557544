# ------ storefront/model/__init__.py ------

from .user import User
from .product import Product, ProductVariant
from .cart import Cart, CartItem
from .voucher import Voucher, VoucherUsage
from .notification import Notification
from .order import Order, OrderItem, OrderStatusHistory
from .order_status import OrderStatus, PaymentMethod

__all__ = [
    "User",
    "Product",
    "ProductVariant",
    "Cart",
    "CartItem",
    "Voucher",
    "VoucherUsage",
    "Notification",
    "Order",
    "OrderItem",
    "OrderStatusHistory",
    "OrderStatus",
    "PaymentMethod",
]
