"""CRUD 操作模块"""
from .inventory import reserve, reserve_many, restore, restore_many
from .orders import (
    add_status_history,
    apply_tx_timeout,
    create_order,
    get_order,
    get_order_by_number,
    get_order_for_update,
    get_status_history,
    list_user_orders,
    set_status,
)
from .promo import compute_discount, redeem as redeem_promo

__all__ = [
    "reserve",
    "reserve_many",
    "restore",
    "restore_many",
    "add_status_history",
    "apply_tx_timeout",
    "create_order",
    "get_order",
    "get_order_by_number",
    "get_order_for_update",
    "get_status_history",
    "list_user_orders",
    "set_status",
    "compute_discount",
    "redeem_promo",
]
