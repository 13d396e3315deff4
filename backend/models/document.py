"""Document data models."""
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Document:
    """An ingested text document.

    Documents are immutable: re-ingesting changed text produces a new
    Document with a higher version via `next_version`.
    """
    id: str
    text: str
    version: int = 1
    byte_size: int = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "byte_size", len(self.text.encode("utf-8")))

    def next_version(self, text: str) -> "Document":
        """Create the superseding version of this document."""
        return Document(id=self.id, text=text, version=self.version + 1)
