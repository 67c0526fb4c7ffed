from .fleet import Organization, Vehicle, Driver
from .waybills import Waybill, RouteSegment
from .inventory import StockItem, StockMovement, StockMovementLine
from .integrity import PeriodLock, BalanceSnapshot
from .audit import BusinessEvent
from .settings import SeasonSetting
from .documents import DocumentSequence

__all__ = [
    'Organization', 'Vehicle', 'Driver',
    'Waybill', 'RouteSegment',
    'StockItem', 'StockMovement', 'StockMovementLine',
    'PeriodLock', 'BalanceSnapshot',
    'BusinessEvent',
    'SeasonSetting',
    'DocumentSequence',
]
