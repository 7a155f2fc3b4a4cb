"""Chunk planning for monthly compaction inputs."""

from __future__ import annotations

from pydantic import BaseModel

# Per-document delimiter overhead in a monthly input.
ENTRY_OVERHEAD = 30


class CompactionDocument(BaseModel):
    """One named text in a compaction input (a daily summary or a chunk summary)."""

    name: str
    content: str

    @property
    def size(self) -> int:
        return len(self.content.encode("utf-8"))

    @property
    def entry_size(self) -> int:
        """Bytes this document contributes to an input, delimiters included."""
        return self.size + len(self.name.encode("utf-8")) + ENTRY_OVERHEAD


def plan_chunks(documents: list[CompactionDocument], budget: int) -> list[list[CompactionDocument]]:
    """Split date-ordered documents into contiguous groups within ``budget``.

    Greedy filling gives the minimum number of groups for a contiguous
    partition. Every group's total ``entry_size`` is at most ``budget``,
    except a single document larger than the budget, which forms a group
    on its own. Documents are never split, reordered or dropped.
    """
    chunks: list[list[CompactionDocument]] = []
    current: list[CompactionDocument] = []
    current_size = 0

    for doc in documents:
        size = doc.entry_size
        if current and current_size + size > budget:
            chunks.append(current)
            current = []
            current_size = 0
        current.append(doc)
        current_size += size

    if current:
        chunks.append(current)
    return chunks


def build_monthly_input(prompt: str, month: str, items: list[CompactionDocument]) -> str:
    """Assemble the stdin payload for a monthly, chunk or merge call."""
    parts = [prompt, f"\n\n---BEGIN MONTHLY COMPACTIONS ({month}, {len(items)} days)---\n\n"]
    for item in items:
        parts.append(item.content)
        parts.append(f"\n--- (end {item.name}) ---\n\n")
    parts.append("---END MONTHLY COMPACTIONS---\n")
    return "".join(parts)
