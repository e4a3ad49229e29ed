from .base import CloseResult, ExchangeClient, ExchangeError, ExchangePosition
from .bybit_client import BybitClient
