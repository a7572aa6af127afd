# fulfillment/enums.py
from enum import Enum

class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    ERROR = "error"

# statuses the poller looks at; PROCESSED is terminal
RECONCILABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PROCESSING, OrderStatus.ERROR})

class Pagination(str, Enum):
    OFFSET = "offset"
    CURSOR = "cursor"

class StoreBackend(str, Enum):
    POSTGREST = "postgrest"
    MEMORY = "memory"
