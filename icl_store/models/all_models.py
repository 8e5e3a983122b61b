# Import all models so Base.metadata.create_all() can see them.

from icl_store.models.user import User  # noqa: F401
from icl_store.models.admin import Admin  # noqa: F401
from icl_store.models.coins import CoinWallet, CoinTransaction  # noqa: F401
from icl_store.models.catalog import Product, ProductSize, Coupon  # noqa: F401
from icl_store.models.cart import CartItem, CartState  # noqa: F401
from icl_store.models.order import Order, OrderItem  # noqa: F401
