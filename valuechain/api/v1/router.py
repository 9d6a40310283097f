from fastapi import APIRouter

from valuechain.api.v1 import value_chain

api_router = APIRouter()

api_router.include_router(value_chain.router)
