from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from leaderboard.errors import InvalidRepositoryUrl, LeaderboardNotReady, RepositoryNotFound
from leaderboard.models.contributor import Leaderboard
from leaderboard.models.error import ErrorDetail
from leaderboard.models.repository import RepositoryState, RepositoryStatus, SubmitRequest, SubmitResult
from leaderboard.services.repository_service import RepositoryService

router = APIRouter()


def get_service(request: Request) -> RepositoryService:
    return request.app.state.pipeline.service


@router.post(
    "/repositories",
    response_model=SubmitResult,
    status_code=202,
    responses={400: {"model": ErrorDetail}},
)
def submit_repository(
    body: SubmitRequest,
    x_github_token: Optional[str] = Header(None),
    service: RepositoryService = Depends(get_service),
) -> SubmitResult:
    """Queue a repository for processing (no-op if it is already queued or fresh)."""
    try:
        return service.submit(body.url, token=x_github_token, max_age_hours=body.max_age_hours)
    except InvalidRepositoryUrl as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get(
    "/repositories/state",
    response_model=RepositoryStatus,
    responses={404: {"model": ErrorDetail}},
)
def get_repository_state(
    url: str = Query(..., min_length=1),
    service: RepositoryService = Depends(get_service),
) -> RepositoryStatus:
    try:
        return service.get_state(url)
    except RepositoryNotFound as exc:
        raise HTTPException(status_code=404, detail="Repository not found") from exc


@router.get(
    "/repositories/leaderboard",
    response_model=Leaderboard,
    responses={404: {"model": ErrorDetail}, 409: {"model": ErrorDetail}},
)
def get_repository_leaderboard(
    url: str = Query(..., min_length=1),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    service: RepositoryService = Depends(get_service),
) -> Leaderboard:
    """Contributors ranked by commit count; only available once processing completed."""
    try:
        return service.get_leaderboard(url, limit=limit)
    except RepositoryNotFound as exc:
        raise HTTPException(status_code=404, detail="Repository not found") from exc
    except LeaderboardNotReady as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@router.get("/repositories", response_model=list[RepositoryStatus])
def list_repositories(
    state: Optional[RepositoryState] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    service: RepositoryService = Depends(get_service),
) -> list[RepositoryStatus]:
    return service.list_repositories(state=state, limit=limit, offset=offset)
