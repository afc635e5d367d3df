from pydantic import BaseModel, ConfigDict, Field


class VariantInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    multipv: int | None = None
    depth: int | None = None
    score_cp: int | None = Field(None, alias="scoreCp", description="Score in centipawns")
    mate: int | None = Field(None, description="Mate in N plies (negative when being mated)")
    nodes: int | None = None
    nps: int | None = None
    pv: list[str] | None = Field(None, description="Principal variation in USI move notation")


class AnalyzeResponse(BaseModel):
    engine: str
    depth: int
    multipv: int
    threads: int
    bestmove: str
    infos: list[VariantInfo]


class HealthResponse(BaseModel):
    ok: bool
    ready: bool
    engine: str | None = None
