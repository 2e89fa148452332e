from fastapi import APIRouter, Depends, Query, Response, status
from typing import List

from reelstream.repositories.base import MovieRepository, UserRepository
from reelstream.schemas.auth import UserResponse
from reelstream.schemas.user import (
    HistoryItemResponse,
    MovieReference,
    PreferencesUpdate,
    ProfileUpdate,
    WatchlistItemResponse,
    WatchlistStatus,
)
from reelstream.services.auth_service import AuthService, UserSession
from reelstream.services.watchlist_service import HISTORY_LIMIT, WatchlistService
from reelstream.utils.dependencies import get_current_session, get_movie_repository, get_user_repository

router = APIRouter(prefix="/api/users/me", tags=["Users"])


# ==================== PROFILE ====================

@router.patch("/profile", response_model=UserResponse)
def update_profile(
    payload: ProfileUpdate,
    session: UserSession = Depends(get_current_session),
    users: UserRepository = Depends(get_user_repository),
):
    return AuthService.update_profile(users, session, payload.model_dump(exclude_unset=True))


@router.patch("/preferences", response_model=UserResponse)
def update_preferences(
    payload: PreferencesUpdate,
    session: UserSession = Depends(get_current_session),
    users: UserRepository = Depends(get_user_repository),
):
    """Merge the given keys into the stored preferences"""
    return AuthService.update_preferences(users, session, payload.preferences)


# ==================== WATCHLIST ====================

@router.get("/watchlist", response_model=List[WatchlistItemResponse])
def get_watchlist(
    session: UserSession = Depends(get_current_session),
    users: UserRepository = Depends(get_user_repository),
):
    return WatchlistService.list(users, session.user_id)


@router.post("/watchlist", response_model=WatchlistStatus)
def add_to_watchlist(
    payload: MovieReference,
    response: Response,
    session: UserSession = Depends(get_current_session),
    users: UserRepository = Depends(get_user_repository),
    movies: MovieRepository = Depends(get_movie_repository),
):
    """
    Add a movie to the watchlist

    Adding a movie that is already listed changes nothing and returns 200;
    a new entry returns 201.
    """
    if WatchlistService.add(users, movies, session.user_id, payload.movie_id):
        response.status_code = status.HTTP_201_CREATED
    return {"movie_id": payload.movie_id, "in_watchlist": True}


@router.get("/watchlist/{movie_id}", response_model=WatchlistStatus)
def watchlist_status(
    movie_id: str,
    session: UserSession = Depends(get_current_session),
    users: UserRepository = Depends(get_user_repository),
):
    return {"movie_id": movie_id, "in_watchlist": WatchlistService.contains(users, session.user_id, movie_id)}


@router.delete("/watchlist/{movie_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_from_watchlist(
    movie_id: str,
    session: UserSession = Depends(get_current_session),
    users: UserRepository = Depends(get_user_repository),
):
    WatchlistService.remove(users, session.user_id, movie_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/watchlist/{movie_id}/toggle", response_model=WatchlistStatus)
def toggle_watchlist(
    movie_id: str,
    session: UserSession = Depends(get_current_session),
    users: UserRepository = Depends(get_user_repository),
    movies: MovieRepository = Depends(get_movie_repository),
):
    result = WatchlistService.toggle(users, movies, session.user_id, movie_id)
    return {"movie_id": movie_id, **result}


# ==================== HISTORY ====================

@router.get("/history", response_model=List[HistoryItemResponse])
def get_history(
    limit: int = Query(HISTORY_LIMIT, ge=1, le=200),
    session: UserSession = Depends(get_current_session),
    users: UserRepository = Depends(get_user_repository),
):
    """Most recently watched first"""
    return WatchlistService.history(users, session.user_id, limit)


@router.post("/history", response_model=HistoryItemResponse)
def record_watch(
    payload: MovieReference,
    session: UserSession = Depends(get_current_session),
    users: UserRepository = Depends(get_user_repository),
    movies: MovieRepository = Depends(get_movie_repository),
):
    return WatchlistService.record_watch(users, movies, session.user_id, payload.movie_id)
