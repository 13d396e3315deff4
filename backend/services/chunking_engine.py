"""Chunking engine with structure-aware splitting and quality scoring."""
import logging
import re
from collections import Counter
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

from errors import ConfigurationError
from models.document import Document
from models.chunk import Chunk, Granularity, make_chunk_id
from models.options import ChunkingOptions
from services.text_utils import (
    TokenCounter,
    classify_content_type,
    clean_heading,
    find_heading,
    is_heading,
    preprocess_text,
    split_sentences,
    split_words,
)
from config import (
    DOMAIN_KEYWORDS,
    HEADING_SCAN_LINES,
    MIN_CONTENT_CHARS,
    QUALITY_BASE,
    QUALITY_LENGTH_BONUS,
    QUALITY_LENGTH_BAND,
    QUALITY_STRUCTURE_BONUS,
    QUALITY_DIVERSITY_BONUS,
    QUALITY_DIVERSITY_THRESHOLD,
)

logger = logging.getLogger(__name__)

STRUCTURE_MARKER = re.compile(r'^\s*(?:step\s+\d+|\d+[.)]\s|[-*•]\s)', re.IGNORECASE | re.MULTILINE)


@dataclass
class _Segment:
    """Smallest unit the packer moves around: a paragraph, sentence or word window."""
    text: str
    start: int
    end: int
    paragraph: int
    section_heading: Optional[str]
    opens_paragraph: bool = False
    opens_section: bool = False
    is_overlap: bool = False


class ChunkingEngine:
    """Segments documents into retrievable chunks with headings and quality scores."""

    def __init__(
        self,
        token_counter: Optional[TokenCounter] = None,
        domain_keywords: Optional[List[str]] = None
    ):
        """
        Initialize ChunkingEngine.

        Args:
            token_counter: Token counting strategy (default: word-based estimate or
                tiktoken, per TOKEN_COUNTER)
            domain_keywords: Words that earn the structure/keyword quality bonus
        """
        self.token_counter = token_counter or TokenCounter()
        keywords = DOMAIN_KEYWORDS if domain_keywords is None else domain_keywords
        self.domain_keywords = {k.lower() for k in keywords}

    def chunk(
        self,
        document: Document,
        options: Optional[ChunkingOptions] = None,
        granularity: Granularity = Granularity.PARAGRAPH
    ) -> List[Chunk]:
        """
        Split a document into ordered chunks.

        1. Split on structural boundaries (blank lines, heading lines)
        2. Accumulate short paragraphs until the minimum size is met
        3. Split paragraphs that are too large on sentence boundaries (then on
           words), carrying `overlap_tokens` of trailing content across the split
        4. Assign each chunk a heading and a quality score

        Args:
            document: Document to chunk
            options: Size limits (default: ChunkingOptions())
            granularity: Which boundaries count as preferred break points

        Returns:
            Chunks in document order with contiguous ordinals from 0

        Raises:
            ConfigurationError: If options or granularity are invalid
        """
        options = options or ChunkingOptions()
        options.validate()
        try:
            granularity = Granularity(granularity)
        except ValueError:
            raise ConfigurationError(f"Unknown granularity: {granularity}")

        text = preprocess_text(document.text)
        if not text:
            logger.warning(f"Document {document.id} v{document.version} has no text to chunk")
            return []

        detect_headings = options.preserve_structure
        try:
            paragraphs = self._extract_paragraphs(text, detect_headings)
        except Exception as e:
            logger.warning(
                f"Structure detection failed for {document.id}: {str(e)}. "
                f"Falling back to plain paragraph splitting"
            )
            detect_headings = False
            paragraphs = self._extract_paragraphs(text, detect_headings)

        cap = options.max_tokens - options.min_tokens
        segments = self._segment(paragraphs, granularity, cap)
        groups = self._pack(segments, options, granularity)
        chunks = self._build_chunks(document, groups, granularity, detect_headings)

        logger.info(
            f"Created {len(chunks)} {granularity.value} chunks from "
            f"{document.id} v{document.version}"
        )
        return chunks

    def chunk_text(
        self,
        text: str,
        options: Optional[ChunkingOptions] = None,
        document_id: str = "document",
        version: int = 1
    ) -> List[Chunk]:
        """Chunk raw text as a paragraph-granularity document."""
        return self.chunk(Document(id=document_id, text=text, version=version), options)

    def _extract_paragraphs(self, text: str, detect_headings: bool) -> List[Tuple[str, int, int, bool]]:
        """
        Split normalized text into paragraphs and heading lines.

        Returns:
            List of (text, start, end, is_heading); offsets index into `text`
        """
        paragraphs = []
        current: List[Tuple[str, int, int]] = []

        def flush():
            if current:
                paragraphs.append((
                    "\n".join(line for line, _, _ in current),
                    current[0][1],
                    current[-1][2],
                    False,
                ))
                current.clear()

        pos = 0
        for line in text.split("\n"):
            start, end = pos, pos + len(line)
            pos = end + 1
            if not line.strip():
                flush()
            elif detect_headings and is_heading(line):
                flush()
                paragraphs.append((line, start, end, True))
            else:
                current.append((line, start, end))
        flush()
        return paragraphs

    def _segment(
        self,
        paragraphs: List[Tuple[str, int, int, bool]],
        granularity: Granularity,
        cap: int
    ) -> List[_Segment]:
        """Break paragraphs into segments no larger than `cap` tokens."""
        segments = []
        heading = None

        for index, (text, start, end, heading_line) in enumerate(paragraphs):
            if heading_line:
                heading = clean_heading(text)

            if granularity == Granularity.SENTENCE or self.token_counter.count(text) > cap:
                pieces = []
                for sentence, s, e in split_sentences(text, start):
                    if self.token_counter.count(sentence) > cap:
                        pieces.extend(self._word_windows(sentence, s, cap))
                    else:
                        pieces.append((sentence, s, e))
            else:
                pieces = [(text, start, end)]

            for i, (piece, s, e) in enumerate(pieces):
                segments.append(_Segment(
                    text=piece,
                    start=s,
                    end=e,
                    paragraph=index,
                    section_heading=heading,
                    opens_paragraph=i == 0,
                    opens_section=heading_line and i == 0,
                ))

        return segments

    def _word_windows(self, sentence: str, base: int, cap: int) -> List[Tuple[str, int, int]]:
        """Cut an oversized sentence into consecutive word windows of at most `cap` tokens."""
        windows = []
        current: List[Tuple[str, int, int]] = []
        for word in split_words(sentence, base):
            candidate = current + [word]
            if current and self.token_counter.count(" ".join(w for w, _, _ in candidate)) > cap:
                windows.append(current)
                current = [word]
            else:
                current = candidate
        if current:
            windows.append(current)
        return [(" ".join(w for w, _, _ in win), win[0][1], win[-1][2]) for win in windows]

    def _pack(
        self,
        segments: List[_Segment],
        options: ChunkingOptions,
        granularity: Granularity
    ) -> List[List[_Segment]]:
        """Greedily pack segments into chunk-sized groups."""
        groups = []
        buffer: List[_Segment] = []

        for segment in segments:
            if (
                buffer
                and self._is_break(segment, granularity, options)
                and self._tokens(buffer) >= options.min_tokens
            ):
                groups.append(buffer)
                buffer = []

            if buffer and self._tokens(buffer + [segment]) > options.max_tokens:
                groups.append(buffer)
                carry = []
                if buffer[-1].paragraph == segment.paragraph:
                    carry = self._overlap(buffer, options.overlap_tokens)
                if carry and self._tokens(carry + [segment]) > options.max_tokens:
                    carry = []
                buffer = carry

            buffer.append(segment)

        if buffer:
            groups.append(buffer)
        return groups

    def _is_break(self, segment: _Segment, granularity: Granularity, options: ChunkingOptions) -> bool:
        if granularity == Granularity.DOCUMENT:
            return False
        if segment.opens_section and options.preserve_structure:
            return True
        if granularity == Granularity.SECTION:
            return False
        if granularity == Granularity.PARAGRAPH:
            return segment.opens_paragraph
        return True

    def _overlap(self, buffer: List[_Segment], overlap_tokens: int) -> List[_Segment]:
        """Trailing segments (or trailing words) of `buffer` worth at most `overlap_tokens`."""
        if overlap_tokens <= 0:
            return []

        carried: List[_Segment] = []
        for segment in reversed(buffer):
            if segment.is_overlap:
                break
            candidate = [segment] + carried
            if self._tokens(candidate) > overlap_tokens:
                break
            carried = candidate

        if not carried:
            tail = buffer[-1]
            words: List[str] = []
            for word in reversed(tail.text.split()):
                if self.token_counter.count(" ".join([word] + words)) > overlap_tokens:
                    break
                words.insert(0, word)
            if not words:
                return []
            carried = [replace(tail, text=" ".join(words))]

        return [
            replace(s, is_overlap=True, opens_paragraph=False, opens_section=False)
            for s in carried
        ]

    def _join(self, segments: List[_Segment]) -> str:
        parts = []
        previous = None
        for segment in segments:
            if previous is not None:
                parts.append(" " if segment.paragraph == previous.paragraph else "\n\n")
            parts.append(segment.text)
            previous = segment
        return "".join(parts)

    def _tokens(self, segments: List[_Segment]) -> int:
        return self.token_counter.count(self._join(segments))

    def _build_chunks(
        self,
        document: Document,
        groups: List[List[_Segment]],
        granularity: Granularity,
        detect_headings: bool
    ) -> List[Chunk]:
        kept = []
        for group in groups:
            content = self._join(group)
            if len(content.strip()) < MIN_CONTENT_CHARS or not any(c.isalnum() for c in content):
                logger.debug(f"Discarding near-empty span in {document.id}: {content!r}")
                continue
            kept.append((group, content))

        ids = [
            make_chunk_id(document.id, document.version, granularity, ordinal)
            for ordinal in range(len(kept))
        ]

        chunks = []
        for ordinal, (group, content) in enumerate(kept):
            own = [s for s in group if not s.is_overlap]

            heading = None
            if detect_headings:
                try:
                    heading = find_heading(content, HEADING_SCAN_LINES) or own[0].section_heading
                except Exception as e:
                    logger.warning(f"Heading detection failed for {ids[ordinal]}: {str(e)}")

            try:
                quality = self.score_quality(content)
            except Exception as e:
                logger.warning(f"Quality scoring failed for {ids[ordinal]}: {str(e)}")
                quality = QUALITY_BASE

            chunks.append(Chunk(
                chunk_id=ids[ordinal],
                document_id=document.id,
                version=document.version,
                ordinal=ordinal,
                granularity=granularity,
                content=content,
                token_count=self.token_counter.count(content),
                char_count=len(content),
                word_count=len(content.split()),
                heading=heading,
                quality_score=quality,
                content_type=classify_content_type(content),
                previous_id=ids[ordinal - 1] if ordinal > 0 else None,
                next_id=ids[ordinal + 1] if ordinal + 1 < len(ids) else None,
                start_offset=own[0].start,
                end_offset=own[-1].end,
                overlap_word_count=sum(len(s.text.split()) for s in group if s.is_overlap),
            ))

        return chunks

    def score_quality(self, content: str) -> float:
        """
        Score how useful a chunk is likely to be as answer context.

        Base 0.5, plus bonuses for a preferred length band, domain keywords or
        structural markers, and lexical diversity. Clamped to [0, 1].
        """
        score = QUALITY_BASE

        low, high = QUALITY_LENGTH_BAND
        if low <= len(content) <= high:
            score += QUALITY_LENGTH_BONUS

        words = re.findall(r"\w+", content.lower())
        if self.domain_keywords.intersection(words) or STRUCTURE_MARKER.search(content):
            score += QUALITY_STRUCTURE_BONUS

        if words and len(set(words)) / len(words) > QUALITY_DIVERSITY_THRESHOLD:
            score += QUALITY_DIVERSITY_BONUS

        return max(0.0, min(1.0, score))

    def get_chunking_stats(self, chunks: List[Chunk]) -> Dict:
        """Summarize a chunking run: sizes, content types and quality distribution."""
        if not chunks:
            return {
                "total_chunks": 0,
                "total_tokens": 0,
                "avg_tokens": 0.0,
                "avg_chars": 0.0,
                "avg_quality": 0.0,
                "content_types": {},
                "quality_distribution": {"high": 0, "medium": 0, "low": 0, "poor": 0},
            }

        distribution = {"high": 0, "medium": 0, "low": 0, "poor": 0}
        for chunk in chunks:
            if chunk.quality_score >= 0.8:
                distribution["high"] += 1
            elif chunk.quality_score >= 0.6:
                distribution["medium"] += 1
            elif chunk.quality_score >= 0.4:
                distribution["low"] += 1
            else:
                distribution["poor"] += 1

        total_tokens = sum(c.token_count for c in chunks)
        return {
            "total_chunks": len(chunks),
            "total_tokens": total_tokens,
            "avg_tokens": total_tokens / len(chunks),
            "avg_chars": sum(c.char_count for c in chunks) / len(chunks),
            "avg_quality": sum(c.quality_score for c in chunks) / len(chunks),
            "content_types": dict(Counter(c.content_type for c in chunks)),
            "quality_distribution": distribution,
        }
