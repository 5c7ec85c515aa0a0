"""
Orders domain package.

Public API:
- Domain models: Order, OrderStatus, DispatchRequest, DispatchState, ExhaustedReason
- Storage: OrderBook, DispatchRequestStore

Should not contain business logic.
"""
from .models import Order, OrderStatus, DispatchRequest, DispatchState, ExhaustedReason
from .repository import OrderBook, DispatchRequestStore, ActiveRequestExistsError

__all__ = ["Order",
           "OrderStatus",
             "DispatchRequest",
               "DispatchState",
               "ExhaustedReason",
               "OrderBook",
               "DispatchRequestStore",
               "ActiveRequestExistsError",
               ]
