"""Multi-scale chunking that links each chunk to its enclosing coarser chunk."""
import bisect
import logging
from dataclasses import replace
from typing import Dict, List, Optional, Sequence

from models.document import Document
from models.chunk import Chunk, ChunkForest, Granularity, GRANULARITY_ORDER
from models.options import ChunkingOptions
from services.chunking_engine import ChunkingEngine
from config import HIERARCHY_SCALES

logger = logging.getLogger(__name__)


def default_scale_options() -> Dict[Granularity, ChunkingOptions]:
    """ChunkingOptions for every granularity, from HIERARCHY_SCALES."""
    return {
        Granularity(name): ChunkingOptions(max_tokens=max_tokens, min_tokens=min_tokens, overlap_tokens=overlap)
        for name, (max_tokens, min_tokens, overlap) in HIERARCHY_SCALES.items()
    }


class HierarchicalChunker:
    """Chunk a document at several granularities and link them into a forest.

    Each granularity is chunked independently by the ChunkingEngine; a finer
    chunk's parent is the chunk one level up whose span contains the finer
    chunk's start (largest overlap breaks ties).
    """

    def __init__(
        self,
        chunking_engine: Optional[ChunkingEngine] = None,
        granularities: Sequence[Granularity] = GRANULARITY_ORDER
    ):
        self.chunking_engine = chunking_engine or ChunkingEngine()
        levels = {Granularity(g) for g in granularities}
        self.granularities = [g for g in GRANULARITY_ORDER if g in levels]
        if not self.granularities:
            raise ValueError("At least one granularity is required")

    def chunk(
        self,
        document: Document,
        options: Optional[Dict[Granularity, ChunkingOptions]] = None
    ) -> List[Chunk]:
        """Chunk at every configured granularity; coarse levels first, each in ordinal order."""
        forest = self.build_forest(document, options)
        return [c for g in self.granularities for c in forest.at(g)]

    def build_forest(
        self,
        document: Document,
        options: Optional[Dict[Granularity, ChunkingOptions]] = None
    ) -> ChunkForest:
        """
        Build the chunk forest for a document.

        Args:
            document: Document to chunk
            options: Per-granularity options; missing levels use HIERARCHY_SCALES

        Returns:
            ChunkForest holding every chunk of every level

        Raises:
            ConfigurationError: If any level's options are invalid
        """
        scales = default_scale_options()
        if options:
            scales.update({Granularity(g): o for g, o in options.items()})
        for granularity in self.granularities:
            scales[granularity].validate()

        forest = ChunkForest()
        parents: List[Chunk] = []

        for granularity in self.granularities:
            level = self.chunking_engine.chunk(document, scales[granularity], granularity)
            if parents:
                level = self._link_parents(level, parents)
            for chunk in level:
                forest.add(chunk)
            logger.debug(f"{granularity.value}: {len(level)} chunks")
            if level:
                parents = level

        logger.info(
            f"Built chunk forest for {document.id} v{document.version}: "
            f"{len(forest)} chunks across {len(self.granularities)} levels"
        )
        return forest

    def _link_parents(self, children: List[Chunk], parents: List[Chunk]) -> List[Chunk]:
        starts = [p.start_offset for p in parents]
        linked = []
        for child in children:
            index = max(bisect.bisect_right(starts, child.start_offset) - 1, 0)
            candidates = parents[index:index + 2]
            best = max(candidates, key=lambda p: (
                p.start_offset <= child.start_offset < p.end_offset,
                min(child.end_offset, p.end_offset) - max(child.start_offset, p.start_offset),
                -p.ordinal,
            ))
            linked.append(replace(child, parent_id=best.chunk_id))
        return linked
