# core/conversion_paths.py
"""Conversion path graph: which source -> target pairs are reachable."""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Set, Tuple

from core.formats import ALL_FORMATS, DocumentFormat, FormatCategory


@dataclass(frozen=True)
class CategoryRule:
    """Targets for every format of a category: its own members (optionally) plus fixed sinks."""
    include_members: bool
    sinks: Tuple[str, ...] = ()


CATEGORY_RULES: Mapping[FormatCategory, CategoryRule] = MappingProxyType({
    FormatCategory.DOCUMENT: CategoryRule(True, ("txt", "html", "md")),
    FormatCategory.SPREADSHEET: CategoryRule(True, ("pdf", "html", "txt")),
    FormatCategory.PRESENTATION: CategoryRule(True, ("pdf",)),
    FormatCategory.EMAIL: CategoryRule(True, ("pdf", "txt", "html")),
    FormatCategory.IMAGE: CategoryRule(True, ("pdf", "txt", "docx")),  # txt/docx are OCR routes
    FormatCategory.MARKUP: CategoryRule(True, ("pdf", "docx", "txt")),
    FormatCategory.EBOOK: CategoryRule(True, ("pdf", "docx", "txt", "html")),
    FormatCategory.PLAIN_TEXT: CategoryRule(True, ("pdf", "docx", "html", "md", "rtf")),
    # ARCHIVE has no rule: extraction only, never a conversion source
})


class ConversionPathGraph:
    """
    Read-only map from format id to reachable target ids.

    Built once; targets that cannot be written (is_output_supported=False) are
    never included. Safe for concurrent reads.
    """

    def __init__(
        self,
        formats: Iterable[DocumentFormat] = ALL_FORMATS,
        rules: Mapping[FormatCategory, CategoryRule] = CATEGORY_RULES,
    ):
        self._formats: Mapping[str, DocumentFormat] = MappingProxyType({f.id: f for f in formats})
        self._paths: Mapping[str, FrozenSet[str]] = MappingProxyType(self._build(rules))

    def _build(self, rules: Mapping[FormatCategory, CategoryRule]) -> Dict[str, FrozenSet[str]]:
        writable = {fid for fid, f in self._formats.items() if f.is_output_supported}
        paths: Dict[str, FrozenSet[str]] = {}
        for fmt in self._formats.values():
            rule = rules.get(fmt.category)
            if rule is None:
                paths[fmt.id] = frozenset()
                continue
            targets: Set[str] = set(rule.sinks)
            if rule.include_members:
                targets.update(f.id for f in self._formats.values() if f.category == fmt.category)
            paths[fmt.id] = frozenset(targets & writable)
        return paths

    def is_convertible(self, source: DocumentFormat, target: DocumentFormat) -> bool:
        if self._formats.get(target.id) != target:
            return False
        return target.id in self._paths.get(source.id, frozenset())

    def supported_targets(self, source: DocumentFormat) -> Set[DocumentFormat]:
        return {self._formats[fid] for fid in self._paths.get(source.id, frozenset())}

    def target_ids(self, source_id: str) -> FrozenSet[str]:
        return self._paths.get(source_id, frozenset())

    def get_format(self, format_id: str) -> Optional[DocumentFormat]:
        return self._formats.get(format_id)
