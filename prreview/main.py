"""
AI Pull Request Reviewer - FastAPI Application

Main entry point for the webhook-driven code review service.
"""

import json
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Optional

from fastapi import (
    BackgroundTasks,
    FastAPI,
    HTTPException,
    Request,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from fastapi.responses import PlainTextResponse

from prreview import __version__
from prreview.analysis.analyzer import CodeAnalyzer
from prreview.api.review_routes import router as reviews_router
from prreview.config import settings
from prreview.database import init_db
from prreview.llm.provider import get_llm_provider
from prreview.monitoring import get_metrics
from prreview.notifications.broadcaster import ROOM_JOINED, ROOM_LEFT, NotificationBroadcaster
from prreview.review_service import ReviewService
from prreview.review_store import ReviewStore
from prreview.webhooks.github import (
    verify_github_signature,
    handle_pull_request_event,
    parse_github_payload,
)

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def build_review_service(
    store: ReviewStore, broadcaster: NotificationBroadcaster
) -> ReviewService:
    """
    Build the pipeline from configuration.

    Raises:
        ValueError: If the configured LLM provider cannot be created
    """
    analyzer = CodeAnalyzer(llm_provider=get_llm_provider())
    return ReviewService(store=store, broadcaster=broadcaster, analyzer=analyzer)


def create_app(
    store: Optional[ReviewStore] = None,
    broadcaster: Optional[NotificationBroadcaster] = None,
    review_service: Optional[ReviewService] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Collaborators may be injected (tests); missing ones are created from
    configuration. The pipeline is built at startup since it needs LLM
    credentials.

    Args:
        store: Review record store
        broadcaster: Real-time notification broadcaster
        review_service: Pipeline orchestrator

    Returns:
        Configured FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        init_db()
        if app.state.review_service is None:
            try:
                app.state.review_service = build_review_service(
                    app.state.store, app.state.broadcaster
                )
                logger.info(f"Using LLM provider: {settings.llm_provider}")
            except ValueError as e:
                logger.error(f"Review pipeline disabled: {str(e)}")
        yield

    app = FastAPI(
        title="AI Pull Request Reviewer",
        description="Webhook-driven AI code review for GitHub pull requests",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.store = store or ReviewStore()
    app.state.broadcaster = broadcaster or NotificationBroadcaster()
    app.state.review_service = review_service

    # Include review API routes
    app.include_router(reviews_router)

    @app.get("/health")
    async def health():
        """
        Health check endpoint.

        Returns:
            dict: Status indicator showing the service is healthy
        """
        return {"status": "healthy"}

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics():
        """Prometheus text exposition of the service metrics."""
        return PlainTextResponse(
            get_metrics().export_prometheus(),
            media_type="text/plain; version=0.0.4",
        )

    @app.post("/webhook/github")
    async def github_webhook(request: Request, background_tasks: BackgroundTasks):
        """
        GitHub webhook endpoint.

        Receives webhook events from GitHub for pull request changes.
        Verifies the signature, creates a Review record and schedules the
        review pipeline to run after the response is sent.

        Security:
        - Verifies HMAC-SHA256 signature from X-Hub-Signature-256 header
        - Rejects requests with invalid signatures (401 Unauthorized)

        Events handled:
        - ping: Webhook connectivity check
        - pull_request opened/reopened/synchronize

        Returns:
            dict: Acknowledgement message
            401: If signature verification fails
            400: If webhook payload is invalid
        """
        # Get raw body for signature verification
        body = await request.body()

        # Get signature header
        signature_header = request.headers.get("X-Hub-Signature-256")
        if not signature_header:
            logger.warning("Webhook missing X-Hub-Signature-256 header")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Missing webhook signature header",
            )

        # Verify webhook secret is configured
        if not settings.webhook_secret:
            logger.error("WEBHOOK_SECRET not configured")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Webhook secret not configured",
            )

        # Verify signature
        if not verify_github_signature(body, signature_header, settings.webhook_secret):
            logger.warning(f"Invalid webhook signature: {signature_header[:20]}...")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid webhook signature",
            )

        event = request.headers.get("X-GitHub-Event", "")
        logger.info(f"GitHub webhook received: {event}")

        if event == "ping":
            logger.info("Ping event received - webhook is active")
            return {"message": "pong"}

        if event != "pull_request":
            logger.info(f"Unhandled event type: {event}")
            return {"message": "Event ignored"}

        # Parse payload
        try:
            payload_dict = json.loads(body)
        except ValueError as e:
            logger.error(f"Failed to parse webhook JSON: {str(e)}")
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload"
            )

        # Parse GitHub payload
        try:
            payload = parse_github_payload(payload_dict)
        except ValueError as e:
            logger.error(f"Failed to parse GitHub payload: {str(e)}")
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

        if payload is None:
            return {"message": "Event ignored"}

        review_service: ReviewService = request.app.state.review_service
        if review_service is None:
            # Authenticated deliveries are always acknowledged
            logger.error("Review pipeline not initialized; event dropped")
            return {"message": "Webhook received"}

        # Handle webhook event
        try:
            job = await handle_pull_request_event(
                payload, request.app.state.store, review_service
            )
        except Exception as e:
            logger.error(f"Error handling webhook: {str(e)}", exc_info=True)
            return {"message": "Webhook received"}

        if job is None:
            return {"message": "Webhook received"}

        background_tasks.add_task(review_service.process_review, **asdict(job))
        return {"message": "Webhook received", "review_id": job.review_id}

    @app.websocket("/ws")
    async def realtime(websocket: WebSocket):
        """
        Real-time review events.

        Clients send ``{"action": "join-room", "room": "user_<id>"}`` (or
        ``leave-room``) and receive ``{"event": ..., "data": ...}`` messages.
        """
        broadcaster: NotificationBroadcaster = websocket.app.state.broadcaster
        await websocket.accept()
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    message = json.loads(raw)
                    action = message["action"]
                    room = str(message["room"])
                except (ValueError, KeyError, TypeError):
                    await websocket.send_json(
                        {"event": "error", "data": {"message": "Invalid message"}}
                    )
                    continue

                if action == "join-room":
                    broadcaster.subscribe(room, websocket)
                    await websocket.send_json(
                        {"event": ROOM_JOINED, "data": {"roomId": room, "success": True}}
                    )
                elif action == "leave-room":
                    broadcaster.unsubscribe(room, websocket)
                    await websocket.send_json(
                        {"event": ROOM_LEFT, "data": {"roomId": room, "success": True}}
                    )
                else:
                    await websocket.send_json(
                        {"event": "error", "data": {"message": f"Unknown action: {action}"}}
                    )
        except WebSocketDisconnect:
            logger.info("Real-time client disconnected")
        finally:
            broadcaster.disconnect(websocket)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)
