from fastapi import APIRouter

from benefit_flow.api.ledgers import employee_holds_router, employee_ledger_router
from benefit_flow.api.requests import requests_router

api_router = APIRouter()
api_router.include_router(requests_router)
api_router.include_router(employee_ledger_router)
api_router.include_router(employee_holds_router)
