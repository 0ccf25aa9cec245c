"""Public-facing routes (APP_ROLE=public)."""

from fastapi import APIRouter

from bookholiday.api.routes import availability, feeds, reservations, webhooks_stripe

router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


router.include_router(reservations.router)
router.include_router(availability.router)
router.include_router(feeds.router)
router.include_router(webhooks_stripe.router)
