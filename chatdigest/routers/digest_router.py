# chatdigest/routers/digest_router.py
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from chatdigest import schemas
from chatdigest.controllers import query_controller
from chatdigest.engine import Engine
from chatdigest.errors import ErrorMessage, NotFound

router = APIRouter()


# Dependency to get the engine built at startup
def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def _unwrap(result):
    if isinstance(result, ErrorMessage):
        status_code = 404 if isinstance(result.error, NotFound) else 500
        raise HTTPException(status_code=status_code, detail=str(result))
    return result


@router.get("/servers", response_model=List[schemas.ServerData])
async def list_servers(refresh: bool = False, engine: Engine = Depends(get_engine)):
    return _unwrap(await query_controller.get_servers(engine, refresh=refresh))


@router.post("/servers/sync", response_model=schemas.SyncResponse)
async def sync_servers(engine: Engine = Depends(get_engine)):
    servers = _unwrap(await query_controller.get_servers(engine, refresh=True))
    return schemas.SyncResponse(status="success", servers_synced=len(servers))


@router.get("/servers/{server_id}/channels", response_model=List[schemas.ChannelData])
async def list_channels(server_id: str, refresh: bool = False, engine: Engine = Depends(get_engine)):
    return _unwrap(await query_controller.get_channels(engine, server_id, refresh=refresh))


@router.post("/servers/{server_id}/channels/sync", response_model=schemas.SyncResponse)
async def sync_channels(server_id: str, engine: Engine = Depends(get_engine)):
    channels = _unwrap(await query_controller.get_channels(engine, server_id, refresh=True))
    return schemas.SyncResponse(status="success", channels_synced=len(channels))


@router.post("/servers/{server_id}/messages/sync", response_model=schemas.SyncReport)
async def sync_messages(server_id: str, channel_id: Optional[str] = None, engine: Engine = Depends(get_engine)):
    return _unwrap(await query_controller.sync_messages(engine, server_id, channel_id))


@router.post("/summaries/summarize", response_model=schemas.SummarizeResponse)
async def summarize(
    server_id: Optional[str] = None,
    channel_id: Optional[str] = None,
    engine: Engine = Depends(get_engine),
):
    return _unwrap(await query_controller.summarize(engine, server_id, channel_id))


@router.get("/summaries", response_model=schemas.SummariesResponse)
async def get_summaries(server_id: str, channel_id: Optional[str] = None, engine: Engine = Depends(get_engine)):
    return _unwrap(await query_controller.get_summaries(engine, server_id, channel_id))


@router.post(
    "/servers/{server_id}/channels/{channel_id}/messages",
    response_model=schemas.PostMessageResponse,
)
async def post_message(
    server_id: str,
    channel_id: str,
    request: schemas.PostMessageRequest,
    engine: Engine = Depends(get_engine),
):
    return _unwrap(await query_controller.post_message(engine, server_id, channel_id, request.content))
