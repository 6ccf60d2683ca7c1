"""
catalog/store.py -- SQLAlchemy-backed persistence for tours and reviews.

Uses SQLAlchemy Core (not ORM) so the dataclasses in catalog/models.py remain
the authoritative domain representation.

Pattern: Repository + Data Mapper. CatalogStore is the repository; the
_row_to_* functions are the mappers. Route handlers never touch SQL directly.

Rating summary: every review insert, update or delete recomputes the parent
tour's ratings_average and ratings_quantity in the same transaction. A tour
with no reviews falls back to the default average of 4.5.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = CatalogStore("sqlite:///natours.db")
    tour_id = store.create_tour(tour)
    store.create_review(Review(tour_id=tour_id, user_id=uid, review="Great", rating=5))
    store.close()
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine

from catalog.models import Review, Tour

_DEFAULT_RATING = 4.5

# Columns a PATCH may touch. Derived rating columns are deliberately absent.
_TOUR_MUTABLE = {"name", "duration", "max_group_size", "difficulty", "price", "summary", "description", "image_cover"}
_REVIEW_MUTABLE = {"review", "rating"}

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_tours = Table(
    "tours",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(40), nullable=False, unique=True),
    Column("duration", Integer, nullable=False),
    Column("max_group_size", Integer, nullable=False),
    Column("difficulty", String(10), nullable=False),
    Column("price", Float, nullable=False),
    Column("summary", Text, nullable=False),
    Column("description", Text),
    Column("image_cover", String(255)),
    Column("ratings_average", Float, nullable=False, server_default=str(_DEFAULT_RATING)),
    Column("ratings_quantity", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_reviews = Table(
    "reviews",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tour_id", Integer, ForeignKey("tours.id", ondelete="CASCADE"), nullable=False),
    Column("user_id", Integer, nullable=False),
    Column("review", Text, nullable=False),
    Column("rating", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    # One review per user per tour.
    UniqueConstraint("tour_id", "user_id", name="uq_review_tour_user"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL mode and foreign keys. Both are per-connection in SQLite."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def _refresh_ratings(conn: Connection, tour_id: int) -> None:
    row = conn.execute(
        select(func.avg(_reviews.c.rating), func.count(_reviews.c.id)).where(_reviews.c.tour_id == tour_id)
    ).fetchone()
    average, quantity = row[0], row[1] or 0
    conn.execute(
        _tours.update()
        .where(_tours.c.id == tour_id)
        .values(
            ratings_average=round(float(average), 1) if quantity else _DEFAULT_RATING,
            ratings_quantity=quantity,
        )
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CatalogStore:
    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Tours
    # ------------------------------------------------------------------

    def create_tour(self, tour: Tour) -> int:
        """Insert a new tour and return its ID.

        Raises sqlalchemy.exc.IntegrityError if the name is already taken.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _tours.insert().values(
                    name=tour.name,
                    duration=tour.duration,
                    max_group_size=tour.max_group_size,
                    difficulty=tour.difficulty,
                    price=tour.price,
                    summary=tour.summary,
                    description=tour.description,
                    image_cover=tour.image_cover,
                    ratings_average=_DEFAULT_RATING,
                    ratings_quantity=0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_tour(self, tour_id: int) -> Optional[Tour]:
        with self.engine.connect() as conn:
            row = conn.execute(_tours.select().where(_tours.c.id == tour_id)).fetchone()
        return _row_to_tour(row) if row is not None else None

    def list_tours(self) -> list[Tour]:
        """Return all tours, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(_tours.select().order_by(_tours.c.id.desc())).fetchall()
        return [_row_to_tour(r) for r in rows]

    def update_tour(self, tour_id: int, **fields) -> bool:
        """Update mutable fields on a tour. Returns False if tour_id was not found.

        Raises ValueError for unknown or derived field names.
        """
        unknown = set(fields) - _TOUR_MUTABLE
        if unknown:
            raise ValueError(f"Unknown tour fields: {unknown!r}")
        if not fields:
            return self.get_tour(tour_id) is not None
        with self.engine.connect() as conn:
            result = conn.execute(_tours.update().where(_tours.c.id == tour_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_tour(self, tour_id: int) -> bool:
        """Delete a tour and its reviews. Returns False if tour_id was not found."""
        with self.engine.begin() as conn:
            conn.execute(_reviews.delete().where(_reviews.c.tour_id == tour_id))
            result = conn.execute(_tours.delete().where(_tours.c.id == tour_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    def create_review(self, review: Review) -> int:
        """Insert a review and refresh the tour's rating summary.

        Raises sqlalchemy.exc.IntegrityError if this user already reviewed
        this tour, or if the tour does not exist.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _reviews.insert().values(
                    tour_id=review.tour_id,
                    user_id=review.user_id,
                    review=review.review,
                    rating=review.rating,
                    created_at=_now_iso(),
                )
            )
            _refresh_ratings(conn, review.tour_id)
            return result.inserted_primary_key[0]

    def get_review(self, review_id: int) -> Optional[Review]:
        with self.engine.connect() as conn:
            row = conn.execute(_reviews.select().where(_reviews.c.id == review_id)).fetchone()
        return _row_to_review(row) if row is not None else None

    def list_reviews(self, tour_id: int) -> list[Review]:
        """Return a tour's reviews, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _reviews.select().where(_reviews.c.tour_id == tour_id).order_by(_reviews.c.id)
            ).fetchall()
        return [_row_to_review(r) for r in rows]

    def update_review(self, review_id: int, **fields) -> bool:
        unknown = set(fields) - _REVIEW_MUTABLE
        if unknown:
            raise ValueError(f"Unknown review fields: {unknown!r}")
        existing = self.get_review(review_id)
        if existing is None:
            return False
        if not fields:
            return True
        with self.engine.begin() as conn:
            conn.execute(_reviews.update().where(_reviews.c.id == review_id).values(**fields))
            _refresh_ratings(conn, existing.tour_id)
        return True

    def delete_review(self, review_id: int) -> bool:
        existing = self.get_review(review_id)
        if existing is None:
            return False
        with self.engine.begin() as conn:
            conn.execute(_reviews.delete().where(_reviews.c.id == review_id))
            _refresh_ratings(conn, existing.tour_id)
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _row_to_tour(row) -> Tour:
    return Tour(
        id=row.id,
        name=row.name,
        duration=row.duration,
        max_group_size=row.max_group_size,
        difficulty=row.difficulty,
        price=row.price,
        summary=row.summary,
        description=row.description,
        image_cover=row.image_cover,
        ratings_average=row.ratings_average,
        ratings_quantity=row.ratings_quantity,
        created_at=row.created_at,
    )


def _row_to_review(row) -> Review:
    return Review(
        id=row.id,
        tour_id=row.tour_id,
        user_id=row.user_id,
        review=row.review,
        rating=row.rating,
        created_at=row.created_at,
    )
