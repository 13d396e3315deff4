"""Unit tests for ChunkingEngine."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
from errors import ConfigurationError
from models.document import Document
from models.chunk import Granularity
from models.options import ChunkingOptions
from services.chunking_engine import ChunkingEngine
from services.text_utils import TokenCounter, preprocess_text


SAMPLE_TEXT = """Eligibility Requirements

Applicants must be enrolled at least half time in an eligible program. Enrollment is verified each term by the registrar. Students who drop below half time lose eligibility for the remainder of the award year.

Income limits apply to every household. The limit depends on household size and is updated each January. Documentation of income must be submitted before the priority deadline.

Application Process

Step 1: Complete the online form with your personal details.
Step 2: Upload proof of enrollment and income documents.
Step 3: Submit the form before the published deadline.

Late applications are reviewed only when funds remain after all on-time applications have been processed. Appeals must be filed in writing within thirty days of the decision."""


def long_paragraph(sentences: int = 40) -> str:
    return " ".join(f"Sentence number {i} describes the policy detail." for i in range(sentences))


def own_words(chunks):
    words = []
    for chunk in chunks:
        words.extend(chunk.content.split()[chunk.overlap_word_count:])
    return words


class TestChunkingEngine:
    """Test suite for ChunkingEngine."""

    @pytest.fixture
    def engine(self):
        return ChunkingEngine(token_counter=TokenCounter("estimate"))

    @pytest.fixture
    def small_options(self):
        return ChunkingOptions(max_tokens=120, min_tokens=20, overlap_tokens=0)

    def test_short_paragraphs_merge_into_single_chunk(self, engine):
        """Two short paragraphs below the minimum become one chunk."""
        chunks = engine.chunk(Document(id="doc", text="A.\n\nB. C. D."))

        assert len(chunks) == 1
        assert chunks[0].ordinal == 0
        assert chunks[0].content == "A.\n\nB. C. D."
        assert chunks[0].chunk_id == "doc_v1_paragraph_0"

    def test_document_shorter_than_min_yields_one_chunk(self, engine):
        text = "Refunds are issued within ten business days. Contact the bursar for details."
        chunks = engine.chunk(Document(id="doc", text=text), ChunkingOptions(max_tokens=450, min_tokens=100))

        assert len(chunks) == 1
        assert chunks[0].content == text
        assert chunks[0].previous_id is None
        assert chunks[0].next_id is None

    def test_empty_document_yields_no_chunks(self, engine):
        assert engine.chunk(Document(id="doc", text="")) == []
        assert engine.chunk(Document(id="doc", text="   \n\n\t ")) == []

    def test_near_empty_content_is_discarded(self, engine):
        assert engine.chunk(Document(id="doc", text="- - -")) == []

    def test_invalid_options_raise_configuration_error(self, engine):
        document = Document(id="doc", text=SAMPLE_TEXT)

        with pytest.raises(ConfigurationError):
            engine.chunk(document, ChunkingOptions(max_tokens=10, min_tokens=20))
        with pytest.raises(ConfigurationError):
            engine.chunk(document, ChunkingOptions(max_tokens=100, min_tokens=0))
        with pytest.raises(ConfigurationError):
            engine.chunk(document, ChunkingOptions(max_tokens=100, min_tokens=10, overlap_tokens=100))

    def test_invalid_granularity_raises_configuration_error(self, engine):
        with pytest.raises(ConfigurationError, match="granularity"):
            engine.chunk(Document(id="doc", text=SAMPLE_TEXT), granularity="chapter")

    def test_ordinals_are_contiguous_and_linked(self, engine, small_options):
        chunks = engine.chunk(Document(id="doc", text=SAMPLE_TEXT), small_options)

        assert len(chunks) > 1
        assert [c.ordinal for c in chunks] == list(range(len(chunks)))
        for previous, current in zip(chunks, chunks[1:]):
            assert previous.next_id == current.chunk_id
            assert current.previous_id == previous.chunk_id
        assert chunks[0].previous_id is None
        assert chunks[-1].next_id is None

    def test_oversized_paragraph_split_with_overlap(self, engine):
        options = ChunkingOptions(max_tokens=60, min_tokens=20, overlap_tokens=12)

        chunks = engine.chunk(Document(id="doc", text=long_paragraph()), options)

        assert len(chunks) > 1
        assert chunks[0].overlap_word_count == 0
        for previous, current in zip(chunks, chunks[1:]):
            n = current.overlap_word_count
            assert n > 0
            assert current.content.split()[:n] == previous.content.split()[-n:]

    def test_no_overlap_when_disabled(self, engine):
        options = ChunkingOptions(max_tokens=60, min_tokens=20, overlap_tokens=0)

        chunks = engine.chunk(Document(id="doc", text=long_paragraph()), options)

        assert all(c.overlap_word_count == 0 for c in chunks)

    def test_oversized_sentence_split_into_word_windows(self, engine):
        text = " ".join(f"token{i}" for i in range(200))
        options = ChunkingOptions(max_tokens=50, min_tokens=10, overlap_tokens=0)

        chunks = engine.chunk(Document(id="doc", text=text), options)

        assert len(chunks) > 1
        assert all(c.token_count <= 50 for c in chunks)
        assert own_words(chunks) == text.split()

    def test_headings_detected_and_inherited(self, engine, small_options):
        chunks = engine.chunk(Document(id="doc", text=SAMPLE_TEXT), small_options)

        by_phrase = {
            phrase: next(c for c in chunks if phrase in c.content)
            for phrase in ("Applicants must", "Income limits", "Step 2", "Late applications")
        }
        assert by_phrase["Applicants must"].heading == "Eligibility Requirements"
        assert by_phrase["Income limits"].heading == "Eligibility Requirements"
        assert by_phrase["Step 2"].heading == "Application Process"
        assert by_phrase["Late applications"].heading == "Application Process"

    def test_section_heading_starts_new_chunk(self, engine, small_options):
        chunks = engine.chunk(Document(id="doc", text=SAMPLE_TEXT), small_options)

        assert any(c.content.startswith("Application Process") for c in chunks)

    def test_preserve_structure_disabled_skips_headings(self, engine):
        options = ChunkingOptions(max_tokens=120, min_tokens=20, overlap_tokens=0, preserve_structure=False)

        chunks = engine.chunk(Document(id="doc", text=SAMPLE_TEXT), options)

        assert all(c.heading is None for c in chunks)
        assert own_words(chunks) == preprocess_text(SAMPLE_TEXT).split()

    def test_structure_detection_failure_falls_back_to_paragraphs(self, engine, small_options, monkeypatch):
        def broken(line):
            raise RuntimeError("boom")

        monkeypatch.setattr("services.chunking_engine.is_heading", broken)

        chunks = engine.chunk(Document(id="doc", text=SAMPLE_TEXT), small_options)

        assert chunks
        assert all(c.heading is None for c in chunks)

    def test_chunk_metadata(self, engine, small_options):
        document = Document(id="handbook", text=SAMPLE_TEXT, version=3)
        chunks = engine.chunk(document, small_options)

        for chunk in chunks:
            assert chunk.document_id == "handbook"
            assert chunk.version == 3
            assert chunk.granularity == Granularity.PARAGRAPH
            assert chunk.char_count == len(chunk.content)
            assert chunk.word_count == len(chunk.content.split())
            assert chunk.chunk_id == f"handbook_v3_paragraph_{chunk.ordinal}"
            assert chunk.embedding is None

    def test_offsets_point_into_normalized_text(self, engine, small_options):
        normalized = preprocess_text(SAMPLE_TEXT)
        chunks = engine.chunk(Document(id="doc", text=SAMPLE_TEXT), small_options)

        for chunk in chunks:
            span = normalized[chunk.start_offset:chunk.end_offset]
            assert span.split() == chunk.content.split()[chunk.overlap_word_count:]

    def test_procedure_chunk_classified(self, engine, small_options):
        chunks = engine.chunk(Document(id="doc", text=SAMPLE_TEXT), small_options)

        steps = next(c for c in chunks if "Step 2" in c.content)
        assert steps.content_type == "procedure"

    def test_sentence_granularity_breaks_on_sentences(self, engine):
        options = ChunkingOptions(max_tokens=40, min_tokens=5, overlap_tokens=0)

        chunks = engine.chunk(Document(id="doc", text=long_paragraph(5)), options, Granularity.SENTENCE)

        assert len(chunks) == 5
        assert all(c.granularity == Granularity.SENTENCE for c in chunks)
        assert chunks[0].content == "Sentence number 0 describes the policy detail."

    def test_chunk_text_wraps_document(self, engine):
        chunks = engine.chunk_text("A.\n\nB. C. D.", document_id="notes", version=2)

        assert len(chunks) == 1
        assert chunks[0].chunk_id == "notes_v2_paragraph_0"

    def test_minimum_gap_fits_one_word(self, engine):
        """With max - min = 2 every piece is a single word and chunks still respect both bounds."""
        text = " ".join(f"word{i}" for i in range(30))
        options = ChunkingOptions(max_tokens=12, min_tokens=10, overlap_tokens=0)

        chunks = engine.chunk(Document(id="doc", text=text), options)

        assert [c.word_count for c in chunks] == [9, 9, 9, 3]
        for chunk in chunks[:-1]:
            assert 10 <= chunk.token_count <= 12
        assert own_words(chunks) == text.split()


def heading_heavy_text() -> str:
    parts = []
    for i in range(8):
        parts.append(f"## Topic {i}")
        parts.append(f"Short note {i} about office hours and the contact desk for this topic.")
    parts.append("Required documents:")
    parts.append("Bring a photo ID and the signed enrollment form to every appointment.")
    parts.append("DEADLINES")
    parts.append(long_paragraph(12))
    return "\n\n".join(parts)


MIXED_TEXT = SAMPLE_TEXT + "\n\n" + long_paragraph()

OVERSIZED_SENTENCE = " ".join(f"clause{i}" for i in range(150)) + "."

LAYOUTS = [
    pytest.param(MIXED_TEXT, ChunkingOptions(60, 20, 12), Granularity.PARAGRAPH, id="paragraphs"),
    pytest.param(heading_heavy_text(), ChunkingOptions(60, 20, 12), Granularity.PARAGRAPH, id="headings"),
    pytest.param(heading_heavy_text(), ChunkingOptions(120, 30, 10), Granularity.SECTION, id="sections"),
    pytest.param(heading_heavy_text(), ChunkingOptions(400, 100, 0), Granularity.DOCUMENT, id="document"),
    pytest.param(long_paragraph(), ChunkingOptions(40, 10, 8), Granularity.SENTENCE, id="sentences"),
    pytest.param(OVERSIZED_SENTENCE, ChunkingOptions(50, 10, 12), Granularity.PARAGRAPH, id="oversized-sentence"),
    pytest.param(
        MIXED_TEXT,
        ChunkingOptions(60, 20, 12, preserve_structure=False),
        Granularity.PARAGRAPH,
        id="flat",
    ),
]


class TestChunkingLayouts:
    """Coverage and size limits across document shapes and granularities."""

    @pytest.fixture
    def engine(self):
        return ChunkingEngine(token_counter=TokenCounter("estimate"))

    @pytest.mark.parametrize("text,options,granularity", LAYOUTS)
    def test_chunks_cover_document_text(self, engine, text, options, granularity):
        chunks = engine.chunk(Document(id="doc", text=text), options, granularity)

        assert own_words(chunks) == preprocess_text(text).split()

    @pytest.mark.parametrize("text,options,granularity", LAYOUTS)
    def test_size_bounds_hold_except_for_last_chunk(self, engine, text, options, granularity):
        chunks = engine.chunk(Document(id="doc", text=text), options, granularity)

        assert chunks
        for chunk in chunks[:-1]:
            assert options.min_tokens <= chunk.token_count <= options.max_tokens
        assert chunks[-1].token_count <= options.max_tokens

    @pytest.mark.parametrize("text,options,granularity", LAYOUTS)
    def test_ordinals_contiguous(self, engine, text, options, granularity):
        chunks = engine.chunk(Document(id="doc", text=text), options, granularity)

        assert [c.ordinal for c in chunks] == list(range(len(chunks)))
        assert all(c.granularity == granularity for c in chunks)


class TestQualityScore:
    """Test suite for chunk quality scoring."""

    @pytest.fixture
    def engine(self):
        return ChunkingEngine(token_counter=TokenCounter("estimate"), domain_keywords=["policy"])

    def test_all_bonuses(self, engine):
        content = " ".join(f"word{i}" for i in range(40)) + " policy"

        assert engine.score_quality(content) == pytest.approx(1.0)

    def test_base_score_for_short_repetitive_text(self, engine):
        assert engine.score_quality("the the the the") == pytest.approx(0.5)

    def test_structural_marker_counts_as_keyword(self, engine):
        content = "Step 1 fill the form"

        # structure bonus and diversity bonus, short length
        assert engine.score_quality(content) == pytest.approx(0.8)

    def test_scores_within_bounds(self, engine):
        chunks = engine.chunk(
            Document(id="doc", text=SAMPLE_TEXT + "\n\n" + long_paragraph()),
            ChunkingOptions(max_tokens=60, min_tokens=20, overlap_tokens=12),
        )

        assert all(0.0 <= c.quality_score <= 1.0 for c in chunks)

    def test_scoring_failure_falls_back_to_base(self, engine, monkeypatch):
        def broken(content):
            raise RuntimeError("boom")

        monkeypatch.setattr(engine, "score_quality", broken)

        chunks = engine.chunk(Document(id="doc", text=SAMPLE_TEXT))

        assert all(c.quality_score == pytest.approx(0.5) for c in chunks)


class TestChunkingStats:
    """Test suite for get_chunking_stats."""

    def test_empty(self):
        stats = ChunkingEngine(token_counter=TokenCounter("estimate")).get_chunking_stats([])

        assert stats["total_chunks"] == 0
        assert stats["quality_distribution"] == {"high": 0, "medium": 0, "low": 0, "poor": 0}

    def test_summary(self):
        engine = ChunkingEngine(token_counter=TokenCounter("estimate"))
        chunks = engine.chunk(
            Document(id="doc", text=SAMPLE_TEXT),
            ChunkingOptions(max_tokens=120, min_tokens=20, overlap_tokens=0),
        )

        stats = engine.get_chunking_stats(chunks)

        assert stats["total_chunks"] == len(chunks)
        assert stats["total_tokens"] == sum(c.token_count for c in chunks)
        assert sum(stats["quality_distribution"].values()) == len(chunks)
        assert sum(stats["content_types"].values()) == len(chunks)
        assert 0.0 <= stats["avg_quality"] <= 1.0
