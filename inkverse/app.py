import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from inkverse import cache, storage
from inkverse.auth import SupabaseVerifier
from inkverse.cache import ImageJobQueue, RedisWindow
from inkverse.llm import CompletionClient, HttpLLM
from inkverse.memory import MemoryStore
from inkverse.models import EngineConfig
from inkverse.pipeline import ChatServices
from inkverse.routes import router
from inkverse.tasks import BackgroundRunner

load_dotenv(Path(__file__).parent.parent / ".env")

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"


def _llm_from_config(llm_config: dict) -> HttpLLM:
    return HttpLLM(
        provider_url=llm_config["provider_url"],
        api_key=llm_config.get("api_key", ""),
        model=llm_config.get("model", ""),
        timeout=float(llm_config.get("timeout", 120.0)),
    )


def create_app(
    data_dir: Path | None = None,
    llm: CompletionClient | None = None,
    window: RedisWindow | None = None,
    queue: ImageJobQueue | None = None,
    verifier=None,
) -> FastAPI:
    """Build the API app. Collaborators default to ones built from env and config.json."""
    resolved = data_dir or Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    storage.init_storage(resolved)

    config = storage.get_config()
    engine = EngineConfig.model_validate(config["engine"])

    client = None
    redis_url = os.getenv("REDIS_URL", "")
    if redis_url and (window is None or queue is None):
        client = cache.connect(redis_url)
        if window is None:
            window = RedisWindow(client, engine.window_size)
        if queue is None and not os.getenv("IMAGE_QUEUE_DISABLED", ""):
            queue = ImageJobQueue(client)
    if window is None:
        logger.info("REDIS_URL not set; recent window is rebuilt from the memory log")

    if llm is None:
        llm = _llm_from_config(config["llm"])

    runner = BackgroundRunner()
    services = ChatServices(
        llm=llm,
        memory=MemoryStore(llm, engine, window=window, runner=runner),
        config=engine,
        temperature=float(config["llm"].get("chat_temperature", 0.7)),
        queue=queue,
        runner=runner,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await runner.drain()
        if client is not None:
            await client.aclose()

    app = FastAPI(title="InkVerse Muse", lifespan=lifespan)
    app.state.services = services
    app.state.verify_token = verifier or SupabaseVerifier.from_env()
    app.include_router(router, prefix="/api")
    return app


# Default app instance for uvicorn (uses DATA_DIR env var or default)
app = create_app()
