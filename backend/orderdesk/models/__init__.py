from .stores import Store, StoreOperatingHours, StoreSpecialDay, StoreConfig
from .catalog import Product, ProductVariation
from .registers import CashRegisterSession
from .orders import Order, OrderItem, OrderStatusConfig, ORDER_SOURCES, ORDER_CHANNELS, PAYMENT_METHODS
from .customers import Customer, CustomerAddress, LoyaltyTransaction, LoyaltyRule

__all__ = [
    'Store', 'StoreOperatingHours', 'StoreSpecialDay', 'StoreConfig',
    'Product', 'ProductVariation',
    'CashRegisterSession',
    'Order', 'OrderItem', 'OrderStatusConfig',
    'ORDER_SOURCES', 'ORDER_CHANNELS', 'PAYMENT_METHODS',
    'Customer', 'CustomerAddress', 'LoyaltyTransaction', 'LoyaltyRule',
]
