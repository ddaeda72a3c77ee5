"""
API routes and endpoints.
"""

from fastapi import APIRouter

from ..schemas.common import ERROR_RESPONSES
from .v1 import admin, catalog, restaurant, student, transactions

api_router = APIRouter(responses=ERROR_RESPONSES)

# 包含所有v1路由
api_router.include_router(student.router, prefix="/student", tags=["学生"])
api_router.include_router(restaurant.router, prefix="/restaurant", tags=["餐厅"])
api_router.include_router(admin.router, prefix="/admin", tags=["管理"])
api_router.include_router(transactions.router, prefix="/transactions", tags=["流水"])
api_router.include_router(catalog.router, prefix="/restaurants", tags=["餐厅目录"])
