from .exchange_client import ExchangeClient, Capabilities
from .order_executor import OrderExecutor, OrderResult
from .position_sizer import PositionSizer

__all__ = ['ExchangeClient', 'Capabilities', 'OrderExecutor', 'OrderResult', 'PositionSizer']
