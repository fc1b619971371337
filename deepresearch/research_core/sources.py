from __future__ import annotations

from dataclasses import dataclass

from deepresearch.models.research import SourceItem
from deepresearch.tools import web_utils


@dataclass(slots=True)
class Registration:
    is_new: bool
    item: SourceItem


class SourceRegistry:
    """Append-only set of discovered sources keyed by canonical URL.

    Iteration order is first-registration order. A later registration of an
    already known canonical URL never adds an entry; it only fills in content
    the stored item does not have yet.
    """

    def __init__(self) -> None:
        self._items: dict[str, SourceItem] = {}

    def __len__(self) -> int:
        return len(self._items)

    def contains(self, url: str) -> bool:
        return web_utils.canonicalize_url(url) in self._items

    def get(self, url: str) -> SourceItem | None:
        return self._items.get(web_utils.canonicalize_url(url))

    def register(
        self,
        url: str,
        *,
        title: str = "",
        snippet: str | None = None,
        extracted_content: str | None = None,
    ) -> Registration:
        key = web_utils.canonicalize_url(url)
        existing = self._items.get(key)
        if existing is None:
            item = SourceItem(
                url=url,
                canonical_url=key,
                title=title or url,
                snippet=snippet or None,
                extracted_content=extracted_content or None,
            )
            self._items[key] = item
            return Registration(is_new=True, item=item)

        if title and existing.title == existing.url:
            existing.title = title
        if snippet and not existing.snippet:
            existing.snippet = snippet
        if extracted_content:
            if not existing.extracted_content:
                existing.extracted_content = extracted_content
            elif extracted_content not in existing.extracted_content:
                existing.extracted_content = f"{existing.extracted_content}\n\n{extracted_content}"
        return Registration(is_new=False, item=existing)

    def all_sources(self) -> list[SourceItem]:
        return list(self._items.values())
