# pikotunnel/api/v1/access_rules.py
"""
Access Rule API Endpoints
Allow or revoke traffic between two peers
"""

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session
from typing import List
import logging

from pikotunnel.core.errors import NotFoundError, ValidationError
from pikotunnel.core.runtime import RelayRuntime
from pikotunnel.schemas.access_rule import AccessRuleResponse
from pikotunnel.schemas.base import ErrorResponse
from .deps import get_db, get_runtime, verify_api_token

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_api_token)])


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={
            "error": "Access rule not found",
            "error_code": "ACCESS_RULE_NOT_FOUND"
        }
    )


@router.get(
    "/access-rules",
    response_model=List[AccessRuleResponse],
    summary="List access rules"
)
def list_access_rules(
    db: Session = Depends(get_db),
    runtime: RelayRuntime = Depends(get_runtime)
):
    return [
        AccessRuleResponse.model_validate(r)
        for r in runtime.access_rule_manager.list_access_rules(db)
    ]


@router.post(
    "/access-rule/{peer_a_id}/{peer_b_id}",
    response_model=AccessRuleResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        201: {"description": "Rule recorded (or the existing rule for this pair)"},
        400: {"description": "Invalid peer pair", "model": ErrorResponse},
    },
    summary="Allow traffic between two peers",
    description="""
    Idempotent: the pair is unordered, and requesting an existing pair in
    either order returns the existing rule unchanged.
    """
)
def create_access_rule(
    peer_a_id: str,
    peer_b_id: str,
    db: Session = Depends(get_db),
    runtime: RelayRuntime = Depends(get_runtime)
):
    try:
        rule = runtime.access_rule_manager.create_access_rule(db, peer_a_id, peer_b_id)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": str(e),
                "error_code": e.error_code
            }
        )
    return AccessRuleResponse.model_validate(rule)


@router.get(
    "/access-rule/{peer_a_id}/{peer_b_id}",
    response_model=AccessRuleResponse,
    responses={404: {"description": "Access rule not found", "model": ErrorResponse}},
    summary="Get access rule for a peer pair"
)
def get_access_rule(
    peer_a_id: str,
    peer_b_id: str,
    db: Session = Depends(get_db),
    runtime: RelayRuntime = Depends(get_runtime)
):
    rule = runtime.access_rule_manager.get_access_rule(db, peer_a_id, peer_b_id)
    if not rule:
        raise _not_found()
    return AccessRuleResponse.model_validate(rule)


@router.delete(
    "/access-rule/{peer_a_id}/{peer_b_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    responses={404: {"description": "Access rule not found", "model": ErrorResponse}},
    summary="Revoke traffic between two peers",
    description="Removes the filter pair and the record immediately, without going through the worker"
)
def delete_access_rule(
    peer_a_id: str,
    peer_b_id: str,
    db: Session = Depends(get_db),
    runtime: RelayRuntime = Depends(get_runtime)
):
    try:
        runtime.access_rule_manager.delete_access_rule(db, peer_a_id, peer_b_id)
    except NotFoundError:
        raise _not_found()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
