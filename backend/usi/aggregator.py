"""Accumulation and ranking of multipv search output."""
from dataclasses import dataclass
from typing import Iterable, TypedDict


class AnalysisVariant(TypedDict, total=False):
    """One candidate line as reported by ``info`` lines.

    Only the fields the engine actually reported are present.
    """

    multipv: int
    depth: int
    score_cp: int
    mate: int
    nodes: int
    nps: int
    pv: list[str]


@dataclass(frozen=True)
class AnalysisResult:
    """Finalized answer for one ``go`` command."""

    bestmove: str
    infos: tuple[AnalysisVariant, ...]

    def as_dict(self) -> dict:
        return {
            "bestmove": self.bestmove,
            "infos": [dict(info) for info in self.infos],
        }


def rank_variants(variants: Iterable[AnalysisVariant]) -> list[AnalysisVariant]:
    """Sort variants ascending by ``multipv``.

    Variants without a rank go last and keep their arrival order. The sort is
    stable, so ties also keep arrival order.

    Args:
        variants: Variants in the order they were first recorded.

    Returns:
        A new list of copies, ranked.
    """
    indexed = [dict(v) for v in variants]
    return sorted(
        indexed,
        key=lambda v: (0, v["multipv"]) if "multipv" in v else (1, 0),
    )


class VariantTable:
    """Per-request store of partial variants keyed by rank."""

    def __init__(self) -> None:
        self._by_rank: dict[int, AnalysisVariant] = {}

    def merge(self, update: AnalysisVariant) -> None:
        """Overlay ``update`` onto the entry for its rank.

        Fields missing from ``update`` keep their previous values. Updates
        without a rank are ignored.
        """
        rank = update.get("multipv")
        if rank is None:
            return
        entry = self._by_rank.setdefault(rank, {})
        # cp and mate scores replace each other
        if "score_cp" in update:
            entry.pop("mate", None)
        if "mate" in update:
            entry.pop("score_cp", None)
        entry.update(update)

    def snapshot(self) -> list[AnalysisVariant]:
        return rank_variants(self._by_rank.values())

    def finalize(self, bestmove: str) -> AnalysisResult:
        return AnalysisResult(bestmove=bestmove, infos=tuple(self.snapshot()))

    def __len__(self) -> int:
        return len(self._by_rank)
