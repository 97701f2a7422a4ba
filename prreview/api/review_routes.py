"""
Review REST API Endpoints

Read access to review records. Clients use these to re-fetch authoritative
state after (re)connecting to the real-time channel, since missed events
are not replayed.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from prreview.database import ReviewStatus
from prreview.review_store import ReviewStore

# Create router for review endpoints
router = APIRouter(prefix="/api/reviews", tags=["reviews"])


def get_store(request: Request) -> ReviewStore:
    """Review store created at application startup."""
    return request.app.state.store


@router.get("")
async def list_reviews(
    repository_id: Optional[int] = Query(None, description="Filter by repository"),
    reviewed_by: Optional[str] = Query(None, description="Filter by review owner"),
    team_id: Optional[str] = Query(None, description="Filter by team"),
    review_status: Optional[ReviewStatus] = Query(
        None, alias="status", description="Filter by review status"
    ),
    store: ReviewStore = Depends(get_store),
):
    """
    List reviews, newest first.

    Returns:
    - reviews: Serialized reviews including findings
    - count: Number of reviews returned
    """
    reviews = await store.list_reviews(
        repository_id=repository_id,
        reviewed_by=reviewed_by,
        team_id=team_id,
        status=review_status,
    )
    return {
        "reviews": [review.to_dict() for review in reviews],
        "count": len(reviews),
    }


@router.get("/stats")
async def get_review_stats(
    team_id: Optional[str] = Query(None, description="Restrict stats to a team"),
    store: ReviewStore = Depends(get_store),
):
    """
    Get review statistics.

    Returns totals per status, the average quality score of reviews that
    have one and the total number of issues found.
    """
    return await store.get_stats(team_id=team_id)


@router.get("/{review_id}")
async def get_review(
    review_id: int,
    store: ReviewStore = Depends(get_store),
):
    """Get a single review with its findings."""
    review = await store.get_review(review_id)
    if review is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Review {review_id} not found",
        )
    return review.to_dict()
