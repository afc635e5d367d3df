import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from engine import AIEngine, is_configured
from schemas import AnalyzeResponse, HealthResponse, VariantInfo
from settings import settings
from usi import EngineError, RequestTimeout

logger = logging.getLogger(__name__)

ENGINE_LABEL = "AI Engine"


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not is_configured():
        logger.warning(f"engine binary not found at {settings.engine_path}")
    engine = AIEngine.from_settings(settings)
    await engine.start()
    app.state.engine = engine
    try:
        yield
    finally:
        await engine.close()


app = FastAPI(title="Shogi Engine Bridge", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.cors_origins] if settings.cors_origins != "*" else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_engine(request: Request) -> AIEngine:
    return request.app.state.engine


def clamp_params(depth: int | None, multipv: int | None, threads: int | None) -> tuple[int, int, int]:
    """Apply the bridge's depth/multipv/threads bounds to raw query values."""
    depth = min(depth or settings.max_depth, settings.max_depth)
    multipv = min(multipv or settings.default_multipv, settings.max_multipv)
    threads = max(1, min(threads or 1, settings.max_threads))
    return depth, multipv, threads


@app.get("/health", response_model=HealthResponse)
def health(engine: AIEngine = Depends(get_engine)):
    return {"ok": True, "ready": engine.ready, "engine": engine.engine_name}


@app.get("/analyze", response_model=AnalyzeResponse, response_model_exclude_none=True)
async def analyze(
    sfen: str = "",
    depth: int | None = None,
    multipv: int | None = None,
    threads: int | None = None,
    forceMove: str | None = None,
    engine: AIEngine = Depends(get_engine),
):
    if not sfen:
        raise HTTPException(status_code=400, detail="sfen required")
    depth, multipv, threads = clamp_params(depth, multipv, threads)

    try:
        result = await engine.analyze(sfen, depth, multipv, threads=threads, force_move=forceMove or None)
    except RequestTimeout as e:
        raise HTTPException(status_code=504, detail=str(e))
    except EngineError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.exception("analysis failed")
        raise HTTPException(status_code=500, detail=str(e))

    return AnalyzeResponse(
        engine=ENGINE_LABEL,
        depth=depth,
        multipv=multipv,
        threads=threads,
        bestmove=result.bestmove,
        infos=[VariantInfo(**info) for info in result.infos],
    )


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
    uvicorn.run(app, host=settings.host, port=settings.port)
