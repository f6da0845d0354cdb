"""
/api/v1 下的全部路由

- /orders: 下单、查询、取消、管理员改状态
- /payments: checkout、payment intent、PayMongo webhook
- /utils: 健康检查
"""
from fastapi import APIRouter

from app.api.routes import orders, payments, utils

api_router = APIRouter()
api_router.include_router(orders.router)
api_router.include_router(payments.router)
api_router.include_router(utils.router)
