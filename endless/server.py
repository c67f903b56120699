"""FastAPI server for Endless story pages with live-typed streaming.

This module provides:
1. Streamed story pages at /post/{seed}-{slug}
2. A daily home page grid at /
3. Model training (POST /api/train) and incremental retraining
   (PUT /api/models/{id}) from plain-text bodies
4. JSON page access, health and info endpoints
"""

import asyncio
import html
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import HTMLResponse, JSONResponse, StreamingResponse
from pydantic import BaseModel, Field
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response as StarletteResponse

from endless import __version__
from endless.cache import ModelCache
from endless.config import load_config
from endless.errors import (
    EndlessError,
    GenerationError,
    InputError,
    ModelNotFoundError,
    SerializationError,
)
from endless.service import retrain_model, train_new_model
from endless.store import ModelStore, SQLiteModelStore
from endless.story import (
    GeneratedPage,
    generate_home_page_posts,
    generate_page,
    page_to_dict,
    parse_post_path,
    parse_seed,
)
from endless.streaming import PageStreamer, stream_page_chunks

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (InputError, 400),
    (ModelNotFoundError, 404),
    (SerializationError, 500),
    (GenerationError, 500),
)


# Response models
class HealthResponse(BaseModel):
    """Response model for health check."""
    status: str
    model_loaded: bool
    model_id: Optional[int] = None
    vocabulary_size: Optional[int] = None


class TrainResponse(BaseModel):
    """Response model for a committed training request."""
    id: int = Field(..., description="Stored model id")
    created_at: str = Field(..., description="ISO timestamp of the stored model")
    sentences: int = Field(..., ge=0, description="Sentences added by this request")
    tokens: int = Field(..., ge=0, description="Words added by this request")
    vocabulary_size: int = Field(..., ge=0)
    transitions: int = Field(..., ge=0)


class PageLinkModel(BaseModel):
    url: str
    title: str
    seed: int


class PageResponse(BaseModel):
    """Response model for a generated page."""
    link: PageLinkModel
    content: str
    links: List[PageLinkModel]
    last_updated: str
    author: str


def _get_client_ip(request: Request) -> str:
    """Extract client IP, honouring proxy headers."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status, size, duration, client and user agent per request.

    The line is written once the body has been sent, so streamed pages log
    their full size and playback duration.
    """

    async def dispatch(self, request: Request, call_next: Any) -> StarletteResponse:
        start = time.perf_counter()
        response = await call_next(request)
        body = response.body_iterator

        async def _logged_body() -> AsyncGenerator[bytes, None]:
            size = 0
            try:
                async for chunk in body:
                    size += len(chunk)
                    yield chunk
            finally:
                duration_ms = (time.perf_counter() - start) * 1000
                logger.info(
                    f"[HTTP] {request.method} {request.url.path} {response.status_code} "
                    f"{size}B {duration_ms:.1f}ms {_get_client_ip(request)} "
                    f"\"{request.headers.get('user-agent', '')}\""
                )

        response.body_iterator = _logged_body()
        return response


def _decode_text(body: bytes) -> str:
    try:
        return body.decode("utf-8")
    except UnicodeDecodeError:
        raise InputError("Training text must be UTF-8") from None


def _parse_model_id(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise InputError(f"Invalid model id: {value!r}") from None


HOME_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Endless</title>
    <style>
        body {{ font-family: Georgia, serif; max-width: 960px; margin: 40px auto; padding: 0 20px; color: #222; }}
        .grid {{ display: grid; grid-template-columns: repeat(auto-fill, minmax(280px, 1fr)); gap: 20px; }}
        .post {{ border: 1px solid #ddd; border-radius: 6px; padding: 16px; }}
        .post h2 {{ font-size: 1.1rem; margin: 0 0 8px; }}
        .meta {{ color: #888; font-size: 0.8rem; }}
        .excerpt {{ color: #555; }}
        a {{ color: #0645ad; text-decoration: none; }}
    </style>
</head>
<body>
    <h1>Endless</h1>
    {body}
</body>
</html>
"""

POST_CARD_TEMPLATE = """
        <div class="post">
            <h2><a href="{url}">{title}</a></h2>
            <div class="meta">{author} &middot; {date}</div>
            <p class="excerpt">{excerpt}</p>
        </div>"""

EXCERPT_CHARS = 200


def render_home_page(posts: List[GeneratedPage]) -> str:
    """Render the home page grid for ``posts``."""
    if not posts:
        body = "<p>No stories yet. Train a model with <code>POST /api/train</code>.</p>"
        return HOME_TEMPLATE.format(body=body)

    cards = []
    for post in posts:
        excerpt = post.content
        if len(excerpt) > EXCERPT_CHARS:
            excerpt = excerpt[:EXCERPT_CHARS].rsplit(" ", 1)[0] + "..."
        cards.append(POST_CARD_TEMPLATE.format(
            url=html.escape(post.link.url, quote=True),
            title=html.escape(post.link.title),
            author=html.escape(post.author),
            date=post.last_updated.strftime("%B %d, %Y"),
            excerpt=html.escape(excerpt),
        ))
    return HOME_TEMPLATE.format(body='<div class="grid">' + "".join(cards) + "\n    </div>")


def create_app(
    config: Optional[Dict[str, Any]] = None,
    store: Optional[ModelStore] = None,
    streamer: Optional[PageStreamer] = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Configuration dictionary; loaded from ``ENDLESS_CONFIG`` (or
            the defaults) when omitted
        store: Model store; a SQLite store at ``store.db_path`` when omitted
        streamer: Page streamer; built from the ``streaming`` section when omitted

    Returns:
        Configured application. Shared state lives on ``app.state``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Open the store and warm the model cache on startup."""
        cfg = config if config is not None else load_config(os.environ.get("ENDLESS_CONFIG"))

        logger.info("=" * 60)
        logger.info("Endless Server Starting")
        logger.info("=" * 60)

        owns_store = store is None
        model_store = store if store is not None else SQLiteModelStore(cfg["store"]["db_path"])
        cache = ModelCache(model_store)

        app.state.config = cfg
        app.state.store = model_store
        app.state.cache = cache
        app.state.streamer = streamer or PageStreamer.from_config(cfg["streaming"])
        app.state.stream_semaphore = asyncio.Semaphore(cfg["server"]["max_concurrent_streams"])

        try:
            await run_in_threadpool(cache.get_active)
            logger.info("Model loaded")
        except ModelNotFoundError:
            logger.warning("No trained model yet; POST text to /api/train to create one")
        except EndlessError as e:
            logger.error(f"Failed to load model: {e}")
            # Continue anyway - health endpoint will report status

        logger.info("Server ready!")
        logger.info("=" * 60)

        yield

        logger.info("Server shutting down...")
        if owns_store:
            model_store.close()

    app = FastAPI(
        title="Endless",
        description="Procedurally generated story pages, streamed as if typed live",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(RequestLoggingMiddleware)

    @app.exception_handler(EndlessError)
    async def endless_error_handler(request: Request, exc: EndlessError) -> JSONResponse:
        status = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
        if status >= 500:
            logger.error(f"{type(exc).__name__} on {request.url.path}: {exc}")
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    def _generation_settings(request: Request) -> Dict[str, Any]:
        return request.app.state.config["generation"]

    @app.get("/", response_class=HTMLResponse)
    async def home(request: Request):
        """Serve the day's home page posts."""
        settings = _generation_settings(request)
        try:
            model = await run_in_threadpool(request.app.state.cache.get_active)
        except ModelNotFoundError:
            return HTMLResponse(render_home_page([]))

        posts = await run_in_threadpool(
            generate_home_page_posts,
            model,
            settings["home_page_posts"],
            max_tokens=settings["max_sentence_tokens"],
        )
        return HTMLResponse(render_home_page(posts))

    @app.get("/post/{post_path}")
    async def post(post_path: str, request: Request):
        """Stream the page for the seed in ``post_path``.

        The page is generated up front so model errors surface as normal
        error responses; only the typing playback is streamed.
        """
        seed = parse_post_path(post_path)
        state = request.app.state
        settings = _generation_settings(request)

        model = await run_in_threadpool(state.cache.get_active)
        page = await run_in_threadpool(
            generate_page, seed, model, max_tokens=settings["max_sentence_tokens"]
        )

        # Concurrent stream limit - fail fast without blocking. No await between
        # the check and the acquire, so a free slot is taken immediately.
        semaphore: asyncio.Semaphore = state.stream_semaphore
        if semaphore.locked():
            raise HTTPException(
                status_code=429,
                detail="Server busy: too many pages streaming. Try again shortly.",
            )
        await semaphore.acquire()

        async def _stream_with_semaphore() -> AsyncGenerator[bytes, None]:
            try:
                async for chunk in stream_page_chunks(state.streamer, page):
                    yield chunk
            finally:
                semaphore.release()

        return StreamingResponse(
            _stream_with_semaphore(),
            media_type="text/html; charset=utf-8",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",  # Disable nginx buffering
            },
        )

    @app.get("/api/post/{seed}", response_model=PageResponse)
    async def post_json(seed: str, request: Request):
        """Return the generated page for ``seed`` as JSON."""
        page_seed = parse_seed(seed)
        settings = _generation_settings(request)
        model = await run_in_threadpool(request.app.state.cache.get_active)
        page = await run_in_threadpool(
            generate_page, page_seed, model, max_tokens=settings["max_sentence_tokens"]
        )
        return page_to_dict(page)

    @app.post("/api/train", response_model=TrainResponse, status_code=201)
    async def train(request: Request):
        """Train a new model from the plain-text request body."""
        text = _decode_text(await request.body())
        state = request.app.state
        result = await run_in_threadpool(train_new_model, state.store, state.cache, text)
        return result.to_dict()

    @app.put("/api/models/{model_id}", response_model=TrainResponse)
    async def retrain(model_id: str, request: Request):
        """Add the plain-text request body to an existing model."""
        parsed_id = _parse_model_id(model_id)
        text = _decode_text(await request.body())
        state = request.app.state
        result = await run_in_threadpool(retrain_model, state.store, state.cache, parsed_id, text)
        return result.to_dict()

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """Check server and model status without loading a model."""
        cache: ModelCache = request.app.state.cache
        model = cache.model
        record = cache.record
        return HealthResponse(
            status="healthy" if model is not None else "model_not_loaded",
            model_loaded=model is not None,
            model_id=record.id if record is not None else None,
            vocabulary_size=model.vocabulary_size if model is not None else None,
        )

    @app.get("/api/info")
    async def get_info():
        """Get server information."""
        return {
            "server": "Endless",
            "version": __version__,
            "endpoints": {
                "/": "Home page (daily posts)",
                "/post/{seed}-{slug}": "Streamed story page",
                "/api/post/{seed}": "Story page as JSON",
                "/api/train": "Train a new model (POST, text/plain)",
                "/api/models/{id}": "Retrain an existing model (PUT, text/plain)",
                "/health": "Health check",
                "/api/info": "Server information",
            },
        }

    return app


app = create_app()


def main():
    """Run the server."""
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    config = load_config(os.environ.get("ENDLESS_CONFIG"))
    host = config["server"]["host"]
    port = config["server"]["port"]

    logger.info(f"Starting server on {host}:{port}")

    uvicorn.run(
        "endless.server:app",
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    main()
