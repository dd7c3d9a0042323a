"""
Service dependencies for FastAPI.

Wires the fiscal service to the process-wide authority client and Redis.
"""

from fastapi import Depends

from backend.app.core.redis_client import get_redis
from backend.app.domain.fiscal.afip_client import get_afip_client
from backend.app.domain.fiscal.fiscal_service import FiscalService


async def get_fiscal_service(redis=Depends(get_redis)) -> FiscalService:
    """
    FastAPI dependency for the fiscal service.

    Tests override this to inject a mocked authority client.
    """
    return FiscalService(afip_client=get_afip_client(), redis=redis)
