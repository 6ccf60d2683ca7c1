"""
api/routes/v1/tours.py -- Tour and review REST endpoints.

Routes:
  GET    /tours                      -- list tours (public, viewer-aware)
  GET    /tours/{tour_id}            -- tour detail + reviews (public, viewer-aware)
  POST   /tours                      -- create tour (admin, lead-guide)
  PATCH  /tours/{tour_id}            -- update tour (admin, lead-guide)
  DELETE /tours/{tour_id}            -- delete tour and its reviews (admin, lead-guide)
  GET    /tours/{tour_id}/reviews    -- list a tour's reviews (requires auth)
  POST   /tours/{tour_id}/reviews    -- review a tour as the caller (user, admin)
  GET    /reviews/{review_id}        -- single review (requires auth)
  PATCH  /reviews/{review_id}        -- edit review (admin, lead-guide)
  DELETE /reviews/{review_id}        -- delete review (admin, lead-guide)

Public read routes use optional_user (soft mode): anonymous visitors get the
same data, logged-in visitors additionally get a `viewer` block.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.exc import IntegrityError

from api.models import (
    ReviewCreate,
    ReviewPatch,
    ReviewResponse,
    TourCreate,
    TourDetailResponse,
    TourListResponse,
    TourPatch,
    TourResponse,
    ViewerInfo,
)
from auth.dependencies import optional_user, protect, restrict_to
from auth.models import User
from catalog.models import Review, Tour
from catalog.store import CatalogStore

router = APIRouter()

_tour_editors = restrict_to("admin", "lead-guide")
_reviewers = restrict_to("user", "admin")


def _viewer(user: Optional[User]) -> Optional[ViewerInfo]:
    if user is None:
        return None
    return ViewerInfo(id=user.id, name=user.name, role=user.role)


def _not_found(what: str) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": f"No {what} found with that ID."})


# ---------------------------------------------------------------------------
# Tours
# ---------------------------------------------------------------------------


@router.get("/tours", response_model=TourListResponse)
def list_tours(request: Request, viewer: Optional[User] = Depends(optional_user)) -> TourListResponse:
    catalog: CatalogStore = request.app.state.catalog
    tours = [TourResponse.from_tour(t) for t in catalog.list_tours()]
    return TourListResponse(results=len(tours), tours=tours, viewer=_viewer(viewer))


@router.get("/tours/{tour_id}", response_model=TourDetailResponse)
def get_tour(request: Request, tour_id: int, viewer: Optional[User] = Depends(optional_user)) -> TourDetailResponse:
    """Tour detail. A logged-in viewer also sees their own review, if any."""
    catalog: CatalogStore = request.app.state.catalog
    tour = catalog.get_tour(tour_id)
    if tour is None:
        raise _not_found("tour")
    reviews = [ReviewResponse.from_review(r) for r in catalog.list_reviews(tour_id)]
    own = None
    if viewer is not None:
        own = next((r for r in reviews if r.user_id == viewer.id), None)
    return TourDetailResponse(
        tour=TourResponse.from_tour(tour),
        reviews=reviews,
        viewer=_viewer(viewer),
        viewer_review=own,
    )


@router.post("/tours", response_model=TourResponse, status_code=201)
def create_tour(request: Request, body: TourCreate, current_user: User = Depends(_tour_editors)) -> TourResponse:
    catalog: CatalogStore = request.app.state.catalog
    tour = Tour(
        name=body.name,
        duration=body.duration,
        max_group_size=body.max_group_size,
        difficulty=body.difficulty.value,
        price=body.price,
        summary=body.summary,
        description=body.description,
        image_cover=body.image_cover,
    )
    try:
        tour_id = catalog.create_tour(tour)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "A tour with that name already exists."},
        ) from exc
    return TourResponse.from_tour(catalog.get_tour(tour_id))


@router.patch("/tours/{tour_id}", response_model=TourResponse)
def update_tour(
    request: Request,
    tour_id: int,
    body: TourPatch,
    current_user: User = Depends(_tour_editors),
) -> TourResponse:
    catalog: CatalogStore = request.app.state.catalog
    updates = body.model_dump(exclude_none=True)
    if "difficulty" in updates:
        updates["difficulty"] = updates["difficulty"].value
    try:
        found = catalog.update_tour(tour_id, **updates)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "A tour with that name already exists."},
        ) from exc
    if not found:
        raise _not_found("tour")
    return TourResponse.from_tour(catalog.get_tour(tour_id))


@router.delete("/tours/{tour_id}", status_code=204)
def delete_tour(request: Request, tour_id: int, current_user: User = Depends(_tour_editors)) -> Response:
    catalog: CatalogStore = request.app.state.catalog
    if not catalog.delete_tour(tour_id):
        raise _not_found("tour")
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------


@router.get("/tours/{tour_id}/reviews", response_model=list[ReviewResponse])
def list_reviews(request: Request, tour_id: int, current_user: User = Depends(protect)) -> list[ReviewResponse]:
    catalog: CatalogStore = request.app.state.catalog
    if catalog.get_tour(tour_id) is None:
        raise _not_found("tour")
    return [ReviewResponse.from_review(r) for r in catalog.list_reviews(tour_id)]


@router.post("/tours/{tour_id}/reviews", response_model=ReviewResponse, status_code=201)
def create_review(
    request: Request,
    tour_id: int,
    body: ReviewCreate,
    current_user: User = Depends(_reviewers),
) -> ReviewResponse:
    """Review a tour. The author is always the caller; tour and user come from the URL and session."""
    catalog: CatalogStore = request.app.state.catalog
    if catalog.get_tour(tour_id) is None:
        raise _not_found("tour")
    try:
        review_id = catalog.create_review(
            Review(tour_id=tour_id, user_id=current_user.id, review=body.review, rating=body.rating)
        )
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "You have already reviewed this tour."},
        ) from exc
    return ReviewResponse.from_review(catalog.get_review(review_id))


@router.get("/reviews/{review_id}", response_model=ReviewResponse)
def get_review(request: Request, review_id: int, current_user: User = Depends(protect)) -> ReviewResponse:
    catalog: CatalogStore = request.app.state.catalog
    review = catalog.get_review(review_id)
    if review is None:
        raise _not_found("review")
    return ReviewResponse.from_review(review)


@router.patch("/reviews/{review_id}", response_model=ReviewResponse)
def update_review(
    request: Request,
    review_id: int,
    body: ReviewPatch,
    current_user: User = Depends(_tour_editors),
) -> ReviewResponse:
    catalog: CatalogStore = request.app.state.catalog
    if not catalog.update_review(review_id, **body.model_dump(exclude_none=True)):
        raise _not_found("review")
    return ReviewResponse.from_review(catalog.get_review(review_id))


@router.delete("/reviews/{review_id}", status_code=204)
def delete_review(request: Request, review_id: int, current_user: User = Depends(_tour_editors)) -> Response:
    catalog: CatalogStore = request.app.state.catalog
    if not catalog.delete_review(review_id):
        raise _not_found("review")
    return Response(status_code=204)
