"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter
from .endpoints import admin, orders, proofs, users, wallets

api_router = APIRouter()

api_router.include_router(
    users.router,
    prefix="/users",
    tags=["users"]
)

api_router.include_router(
    orders.router,
    prefix="/orders",
    tags=["orders"]
)

api_router.include_router(
    wallets.router,
    prefix="/wallets",
    tags=["wallets"]
)

api_router.include_router(
    proofs.router,
    prefix="/proofs",
    tags=["proofs"]
)

api_router.include_router(
    admin.router,
    prefix="/admin",
    tags=["admin"]
)
