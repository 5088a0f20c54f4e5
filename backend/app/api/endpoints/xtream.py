import asyncio
import logging
from typing import Any, List, Optional, Tuple

import httpx
from fastapi import APIRouter, Depends, HTTPException

from app import schemas
from app.api import deps
from app.core.config import settings
from app.core.exceptions import (
    AuthFailure, ConnectionFailure, InvalidServer, MissingCredentials
)
from app.services.catalog import get_aggregator
from app.services.xtream import XtreamClient, normalize_credentials

logger = logging.getLogger(__name__)

router = APIRouter()


def validate_credentials(credentials_in: schemas.CredentialsIn) -> schemas.Credentials:
    """Normalize request credentials, answering 400 when they are unusable."""
    try:
        return normalize_credentials(
            credentials_in.server, credentials_in.username, credentials_in.password
        )
    except MissingCredentials:
        raise HTTPException(status_code=400, detail="Missing credentials")
    except InvalidServer:
        raise HTTPException(status_code=400, detail="Invalid server URL")


def build_client(credentials_in: schemas.CredentialsIn,
                 transport: Optional[httpx.AsyncBaseTransport] = None) -> XtreamClient:
    """Validate request credentials before any network call."""
    return XtreamClient(validate_credentials(credentials_in), transport=transport)


async def run_with_deadline(coro) -> Any:
    """Await an aggregation under the request deadline, mapping failures to HTTP errors."""
    try:
        return await asyncio.wait_for(coro, timeout=settings.AGGREGATION_DEADLINE)
    except AuthFailure:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    except ConnectionFailure:
        raise HTTPException(status_code=502, detail="Could not connect to server")
    except asyncio.TimeoutError:
        logger.error(f"Aggregation exceeded {settings.AGGREGATION_DEADLINE}s deadline")
        raise HTTPException(status_code=504, detail="Provider took too long to answer")


async def materialize(request: schemas.MaterializeRequest,
                      transport: Optional[httpx.AsyncBaseTransport] = None
                      ) -> Tuple[schemas.Credentials, List[schemas.Stream]]:
    client = build_client(request.credentials, transport)
    aggregator = get_aggregator(client, request.strategy)
    streams = await run_with_deadline(aggregator.materialize(request.categories))
    return client.credentials, streams


@router.post("/categories", response_model=schemas.DiscoveryResponse)
async def discover_categories(
    credentials_in: schemas.CredentialsIn,
    transport: Optional[httpx.AsyncBaseTransport] = Depends(deps.get_upstream_transport),
) -> Any:
    """Check the credentials and list live, vod and series categories."""
    client = build_client(credentials_in, transport)
    aggregator = get_aggregator(client)
    return await run_with_deadline(aggregator.discover())


@router.post("/streams", response_model=schemas.StreamListResponse)
async def list_selected_streams(
    request: schemas.MaterializeRequest,
    transport: Optional[httpx.AsyncBaseTransport] = Depends(deps.get_upstream_transport),
) -> Any:
    """Expand the selected categories into playable streams."""
    _, streams = await materialize(request, transport)
    return schemas.StreamListResponse(streams=streams, total=len(streams))
