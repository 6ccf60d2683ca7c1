"""
catalog/models.py -- Domain dataclasses for tours and reviews.

These are pure data containers with zero logic. Persistence and the rating
summary live in catalog/store.py.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class Tour:
    """A bookable tour.

    ratings_average / ratings_quantity are derived from the tour's reviews and
    recomputed by the store on every review write; callers never set them.

    id is None before the record is written to the database.
    """

    name: str
    duration: int  # days
    max_group_size: int
    difficulty: str  # "easy" | "medium" | "difficult"
    price: float
    summary: str
    description: Optional[str] = None
    image_cover: Optional[str] = None
    ratings_average: float = 4.5
    ratings_quantity: int = 0
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert


@dataclass
class Review:
    """One user's review of one tour. A user may review a given tour only once."""

    tour_id: int
    user_id: int
    review: str
    rating: int  # 1..5
    id: Optional[int] = None
    created_at: str = ""
