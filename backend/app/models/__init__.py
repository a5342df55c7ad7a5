from .catalog import RawMaterial, Product, ProductIngredient
from .sales import Sale
from .auth import User, SessionToken, ROLES, ROLE_SUPER_ADMIN, ROLE_STAFF

__all__ = [
    'RawMaterial', 'Product', 'ProductIngredient',
    'Sale',
    'User', 'SessionToken', 'ROLES', 'ROLE_SUPER_ADMIN', 'ROLE_STAFF',
]
