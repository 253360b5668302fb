from .tenancy import Vendor, Branch
from .auth import User
from .catalog import Product, ProductVariant, VariantComboDiscount, Promocode
from .orders import Address, CartItem, Order, OrderItem, OrderStatusHistory
from .inventory import InventoryMovement

__all__ = [
    'Vendor', 'Branch',
    'User',
    'Product', 'ProductVariant', 'VariantComboDiscount', 'Promocode',
    'Address', 'CartItem', 'Order', 'OrderItem', 'OrderStatusHistory',
    'InventoryMovement',
]
