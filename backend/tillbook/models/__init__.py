from .catalog import Product
from .customers import (
    Customer,
    SEGMENTS,
    SEGMENT_NEW,
    SEGMENT_PROMISING,
    SEGMENT_CHAMPION,
    SEGMENT_AT_RISK,
    SEGMENT_LOST,
)
from .jobs import JobLease
from .orders import (
    Order,
    OrderLine,
    ImmutableRowError,
    ORDER_STATUSES,
    ORDER_PENDING,
    ORDER_PAID,
    ORDER_CANCELLED,
)

__all__ = [
    'Product',
    'Customer', 'SEGMENTS',
    'SEGMENT_NEW', 'SEGMENT_PROMISING', 'SEGMENT_CHAMPION', 'SEGMENT_AT_RISK', 'SEGMENT_LOST',
    'Order', 'OrderLine', 'ImmutableRowError',
    'ORDER_STATUSES', 'ORDER_PENDING', 'ORDER_PAID', 'ORDER_CANCELLED',
    'JobLease',
]
