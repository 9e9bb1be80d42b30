"""Vote, follow and save endpoints sharing one toggle contract."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Response, status

from mideeye.api.v1.dependencies import CurrentUserDep, SessionDep
from mideeye.schemas.relations import (
    AggregateResponse,
    OwnerRelationsResponse,
    RelationCastRequest,
    RelationCastResponse,
    RelationKind,
    TargetIdsRequest,
)
from mideeye.services import relation_service

router = APIRouter(prefix="/relations", tags=["relations"])


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


@router.put("/{kind}/{target_id}", response_model=RelationCastResponse)
async def cast_relation(
    kind: RelationKind,
    target_id: str,
    body: RelationCastRequest,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> RelationCastResponse:
    """Create the caller's relation to ``target_id`` or change its value."""
    result = relation_service.cast_relation(db, kind, current_user.id, target_id, body.value)
    if not result.success:
        raise _bad_request(result.error)
    return RelationCastResponse(kind=kind, target_id=target_id, value=result.data)


@router.delete("/{kind}/{target_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_relation(
    kind: RelationKind,
    target_id: str,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> Response:
    """Remove the caller's relation; succeeds when there is nothing to remove."""
    result = relation_service.remove_relation(db, current_user.id, target_id, kind)
    if not result.success:
        raise _bad_request(result.error)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{kind}/aggregate", response_model=AggregateResponse)
async def get_aggregate(
    kind: RelationKind,
    body: TargetIdsRequest,
    db: SessionDep,
) -> AggregateResponse:
    """Summed values per target. Targets without rows are omitted."""
    result = relation_service.get_aggregate(db, kind, body.target_ids)
    if not result.success:
        raise _bad_request(result.error)
    return AggregateResponse(kind=kind, counts=result.data)


@router.post("/{kind}/mine", response_model=OwnerRelationsResponse)
async def get_owner_relations(
    kind: RelationKind,
    body: TargetIdsRequest,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> OwnerRelationsResponse:
    """The caller's own value per target."""
    result = relation_service.get_owner_relations(db, current_user.id, kind, body.target_ids)
    if not result.success:
        raise _bad_request(result.error)
    return OwnerRelationsResponse(kind=kind, values=result.data)
