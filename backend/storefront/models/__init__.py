from .stores import Store
from .catalog import Product, ProductVariant, ProductCategory
from .carts import Cart, CartItem, Coupon
from .orders import Order, OrderItem
from .payments import PaymentMethod, Payment, Refund
from .downloads import DigitalDownload, DownloadLink
from .documents import DocumentSequence

__all__ = [
    'Store',
    'Product', 'ProductVariant', 'ProductCategory',
    'Cart', 'CartItem', 'Coupon',
    'Order', 'OrderItem',
    'PaymentMethod', 'Payment', 'Refund',
    'DigitalDownload', 'DownloadLink',
    'DocumentSequence',
]
