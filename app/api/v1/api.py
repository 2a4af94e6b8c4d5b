# app/api/v1/api.py
from fastapi import APIRouter
from app.api.v1.endpoints import dolibarr

api_router = APIRouter()
api_router.include_router(dolibarr.router, prefix="/dolibarr", tags=["dolibarr"])
