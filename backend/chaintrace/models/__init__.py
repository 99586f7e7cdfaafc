from .auth import User, SessionToken, USER_ROLES
from .catalog import Product, Batch, GlobalCounter, product_qr_grants
from .network import Partnership, QRAccessRequest, partnership_pair_key
from .reconciliation import ReconciliationDefect

__all__ = [
    'User', 'SessionToken', 'USER_ROLES',
    'Product', 'Batch', 'GlobalCounter', 'product_qr_grants',
    'Partnership', 'QRAccessRequest', 'partnership_pair_key',
    'ReconciliationDefect',
]
