# pikotunnel/api/v1/peers.py
"""
Peer API Endpoints
Create, inspect and delete tunnel peers on the relay
"""

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session
from typing import List
import logging

from pikotunnel.core.client_config import build_client_config, render_setup_script
from pikotunnel.core.errors import SubnetExhaustedError
from pikotunnel.core.runtime import RelayRuntime
from pikotunnel.database.models import Peer
from pikotunnel.schemas.base import ErrorResponse
from pikotunnel.schemas.peer import PeerResponse, PeerStatusResponse, PeerConfigResponse
from .deps import get_db, get_runtime, verify_api_token

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_api_token)])

# Handlers are plain `def`: enqueueing may block on a full queue, which must
# tie up a threadpool worker rather than the event loop.


def _peer_or_404(runtime: RelayRuntime, db: Session, peer_id: str) -> Peer:
    peer = runtime.peer_manager.get_peer(db, peer_id)
    if not peer:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error": "Peer not found",
                "error_code": "PEER_NOT_FOUND"
            }
        )
    return peer


@router.post(
    "",
    response_model=PeerResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        201: {"description": "Peer recorded, provisioning queued"},
        503: {"description": "Subnet exhausted", "model": ErrorResponse},
    },
    summary="Create peer",
    description="""
    Allocate an address and keypair, record the peer as pending and queue it
    for provisioning. The response carries the private key; it is the only
    credential the client needs.
    """
)
def create_peer(
    db: Session = Depends(get_db),
    runtime: RelayRuntime = Depends(get_runtime)
):
    try:
        peer = runtime.peer_manager.create_peer(db)
    except SubnetExhaustedError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": str(e),
                "error_code": e.error_code
            }
        )
    return PeerResponse.model_validate(peer)


@router.get(
    "",
    response_model=List[PeerResponse],
    summary="List peers"
)
def list_peers(
    db: Session = Depends(get_db),
    runtime: RelayRuntime = Depends(get_runtime)
):
    return [PeerResponse.model_validate(p) for p in runtime.peer_manager.list_peers(db)]


@router.get(
    "/{peer_id}",
    response_model=PeerResponse,
    responses={404: {"description": "Peer not found", "model": ErrorResponse}},
    summary="Get peer by ID"
)
def get_peer(
    peer_id: str,
    db: Session = Depends(get_db),
    runtime: RelayRuntime = Depends(get_runtime)
):
    return PeerResponse.model_validate(_peer_or_404(runtime, db, peer_id))


@router.get(
    "/{peer_id}/status",
    response_model=PeerStatusResponse,
    responses={404: {"description": "Peer not found", "model": ErrorResponse}},
    summary="Get peer status"
)
def get_peer_status(
    peer_id: str,
    db: Session = Depends(get_db),
    runtime: RelayRuntime = Depends(get_runtime)
):
    return PeerStatusResponse(status=_peer_or_404(runtime, db, peer_id).status)


@router.get(
    "/{peer_id}/config",
    response_model=PeerConfigResponse,
    responses={404: {"description": "Peer not found", "model": ErrorResponse}},
    summary="Get client configuration"
)
def get_peer_config(
    peer_id: str,
    db: Session = Depends(get_db),
    runtime: RelayRuntime = Depends(get_runtime)
):
    peer = _peer_or_404(runtime, db, peer_id)
    return PeerConfigResponse(**build_client_config(peer, runtime.settings))


@router.get(
    "/{peer_id}/script",
    response_class=PlainTextResponse,
    responses={404: {"description": "Peer not found", "model": ErrorResponse}},
    summary="Get client setup script",
    description="Bash script taking `up` or `down` that configures the client interface"
)
def get_peer_script(
    peer_id: str,
    db: Session = Depends(get_db),
    runtime: RelayRuntime = Depends(get_runtime)
):
    peer = _peer_or_404(runtime, db, peer_id)
    return PlainTextResponse(render_setup_script(peer, runtime.settings))


@router.delete(
    "/{peer_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Delete peer",
    description="""
    Mark the peer for deletion. The worker removes its access rules, the
    tunnel entry and finally the record. Unknown or already deleting peers
    are a no-op.
    """
)
def delete_peer(
    peer_id: str,
    db: Session = Depends(get_db),
    runtime: RelayRuntime = Depends(get_runtime)
):
    runtime.peer_manager.request_delete(db, peer_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
