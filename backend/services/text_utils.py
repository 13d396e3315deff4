"""Text helpers shared by chunking and retrieval."""
import logging
import math
import re
from typing import List, Optional, Tuple

import tiktoken

from errors import ConfigurationError
from config import (
    TOKEN_COUNTER,
    TIKTOKEN_ENCODING,
    TOKENS_PER_WORD,
    HEADING_MAX_CHARS,
    KEYWORD_MIN_TOKEN_LENGTH,
)

logger = logging.getLogger(__name__)

CONTROL_CHARS = re.compile(r'[\x00-\x08\x0b\x0e-\x1f\x7f]')
TRAILING_SPACE = re.compile(r'[ \t]+\n')
EXCESS_NEWLINES = re.compile(r'\n{3,}')

# Sentence ends at terminal punctuation, optionally followed by a closing quote or bracket
SENTENCE_BOUNDARY = re.compile(r'(?:(?<=[.!?])|(?<=[.!?]["\')\]]))\s+')
WORD = re.compile(r'\S+')

MARKDOWN_HEADING = re.compile(r'^#{1,6}\s+\S')
MARKER_HEADING = re.compile(r'^(?:step|chapter|section|part)\s+\d+\b', re.IGNORECASE)
NUMBERED_HEADING = re.compile(r'^\d+(?:\.\d+)*\.?\s+[A-Z]')
MINOR_WORDS = {"a", "an", "and", "as", "at", "by", "for", "in", "of", "on", "or", "the", "to", "with"}

TABLE_ROW = re.compile(r'^.*\|.*\|.*\|.*\|', re.MULTILINE)
LIST_ITEM = re.compile(r'^\s*(?:[-*•]|\d+[.)])\s+', re.MULTILINE)
CODE_HINT = re.compile(r'```|^ {4,}\S|^\s*(?:def|class|function|import)\s', re.MULTILINE)
DEFINITION_HINT = re.compile(r'\b(?:is defined as|means|refers to)\b', re.IGNORECASE)
PROCEDURE_HINT = re.compile(r'\bstep\s+\d+', re.IGNORECASE)

STOP_WORDS = {
    "the", "and", "for", "are", "but", "not", "you", "all", "any", "can", "her", "was",
    "one", "our", "out", "has", "had", "his", "how", "its", "may", "who", "did", "does",
    "what", "when", "where", "which", "why", "with", "this", "that", "these", "those",
    "from", "into", "about", "have", "will", "would", "should", "could", "there", "their",
    "they", "them", "than", "then", "been", "being", "were", "also", "your", "some",
}


class TokenCounter:
    """Counts tokens either by word-based estimate or with a tiktoken encoding."""

    def __init__(self, mode: str = TOKEN_COUNTER, encoding_name: str = TIKTOKEN_ENCODING):
        if mode not in ("estimate", "tiktoken"):
            raise ConfigurationError(f"Unknown token counter: {mode}")
        self.mode = mode
        self._encoding = None
        if mode == "tiktoken":
            logger.info(f"Loading tiktoken encoding: {encoding_name}")
            self._encoding = tiktoken.get_encoding(encoding_name)

    def count(self, text: str) -> int:
        if not text:
            return 0
        if self._encoding is not None:
            return len(self._encoding.encode(text))
        return estimate_tokens(text)


def estimate_tokens(text: str) -> int:
    """Approximate token count: ceil(words * 1.33)."""
    return math.ceil(len(text.split()) * TOKENS_PER_WORD)


def preprocess_text(text: str) -> str:
    """Normalize whitespace and strip control characters before chunking."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = text.replace("\t", "    ").replace("\f", "\n")
    text = CONTROL_CHARS.sub("", text)
    text = TRAILING_SPACE.sub("\n", text)
    text = EXCESS_NEWLINES.sub("\n\n", text)
    return text.strip()


def split_sentences(text: str, base_offset: int = 0) -> List[Tuple[str, int, int]]:
    """
    Split text on sentence-ending punctuation.

    Args:
        text: Text to split
        base_offset: Offset of `text` within the enclosing document

    Returns:
        List of (sentence, start, end) with offsets relative to the document
    """
    spans = []
    start = 0
    for match in SENTENCE_BOUNDARY.finditer(text):
        spans.append((start, match.start()))
        start = match.end()
    spans.append((start, len(text)))
    return [
        (text[s:e], base_offset + s, base_offset + e)
        for s, e in spans
        if text[s:e].strip()
    ]


def split_words(text: str, base_offset: int = 0) -> List[Tuple[str, int, int]]:
    return [(m.group(), base_offset + m.start(), base_offset + m.end()) for m in WORD.finditer(text)]


def is_heading(line: str) -> bool:
    """Heuristic check for a heading-like line."""
    stripped = line.strip()
    if not stripped or len(stripped) > HEADING_MAX_CHARS:
        return False
    if MARKDOWN_HEADING.match(stripped):
        return True
    if stripped[-1] in ".!?;,":
        return False
    if MARKER_HEADING.match(stripped) or NUMBERED_HEADING.match(stripped):
        return True
    if stripped.endswith(":"):
        return True

    letters = [c for c in stripped if c.isalpha()]
    if len(letters) >= 2 and stripped.upper() == stripped:
        return True

    words = stripped.split()
    if len(words) > 8 or not words[0][0].isupper():
        return False
    return all(
        w[0].isupper() or not w[0].isalpha() or w.lower() in MINOR_WORDS
        for w in words
    )


def clean_heading(line: str) -> str:
    return line.strip().lstrip("#").strip().rstrip(":").strip()


def find_heading(content: str, scan_lines: int) -> Optional[str]:
    """Return the first heading-like line among the first `scan_lines` lines."""
    lines = [line for line in content.split("\n") if line.strip()]
    for line in lines[:scan_lines]:
        if is_heading(line):
            return clean_heading(line)
    return None


def classify_content_type(content: str) -> str:
    """Classify chunk content as table, list, code, definition, procedure or text."""
    if len(TABLE_ROW.findall(content)) >= 1 and content.count("|") > 4:
        return "table"
    if len(LIST_ITEM.findall(content)) >= 2:
        return "list"
    if CODE_HINT.search(content):
        return "code"
    if DEFINITION_HINT.search(content):
        return "definition"
    if PROCEDURE_HINT.search(content):
        return "procedure"
    return "text"


def tokenize_query(query: str, min_length: int = KEYWORD_MIN_TOKEN_LENGTH) -> List[str]:
    """Lowercase, strip punctuation, drop short tokens and stop words."""
    tokens = re.findall(r"[a-z0-9]+", query.lower())
    return [t for t in tokens if len(t) >= min_length and t not in STOP_WORDS]


def truncate_for_embedding(text: str, max_chars: int) -> str:
    """Cut text to the embedding provider's input limit, preferring a word boundary."""
    if len(text) <= max_chars:
        return text
    cut = text.rfind(" ", 0, max_chars)
    if cut < max_chars // 2:
        cut = max_chars
    return text[:cut].rstrip()
