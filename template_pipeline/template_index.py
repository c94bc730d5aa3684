"""In-memory index of catalog templates, rebuilt on demand."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from template_pipeline.db import db_session
from template_pipeline.job_models import TemplateRecord


logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class TemplateSummary:
    slug: str
    name: str
    description: Optional[str] = None
    type: str = "component"
    engine: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    updated_at: Optional[datetime] = None


@dataclass
class RefreshContext:
    reason: str
    import_id: Optional[str] = None
    template_id: Optional[str] = None
    request_id: Optional[str] = None


TemplateLoader = Callable[[], Sequence[TemplateSummary]]


def sql_template_loader(session_factory: Optional[sessionmaker] = None) -> TemplateLoader:
    def load() -> List[TemplateSummary]:
        with db_session(session_factory) as session:
            rows = session.scalars(select(TemplateRecord).order_by(TemplateRecord.updated_at.desc())).all()
            return [
                TemplateSummary(
                    slug=row.slug,
                    name=row.name,
                    description=row.description,
                    type=row.type,
                    engine=row.engine,
                    tags=list(row.tags or []),
                    updated_at=row.updated_at,
                )
                for row in rows
            ]

    return load


def _timestamp(template: TemplateSummary) -> datetime:
    value = template.updated_at
    if value is None:
        return _EPOCH
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def score_template(template: TemplateSummary, query: str) -> int:
    needle = query.lower()
    score = 0
    if needle in (template.name or "").lower():
        score += 10
    if needle in (template.slug or "").lower():
        score += 8
    if needle in (template.description or "").lower():
        score += 4
    if needle in [str(tag).lower() for tag in template.tags]:
        score += 6
    # parameterised templates get a small boost, but only once they match
    if score and (template.engine or "").lower() == "hbs":
        score += 1
    return score


class TemplateIndex:
    def __init__(self, loader: TemplateLoader) -> None:
        self._loader = loader
        self._items: List[TemplateSummary] = []
        self.last_refresh: Optional[RefreshContext] = None
        self.refreshed_at: Optional[datetime] = None

    def __len__(self) -> int:
        return len(self._items)

    def refresh(self, context: RefreshContext) -> int:
        """Reload every template from the loader; raises whatever the loader raises."""

        items = list(self._loader())
        self._items = items
        self.last_refresh = context
        self.refreshed_at = datetime.now(timezone.utc)
        logger.info(
            "template_index.refreshed reason=%s import_id=%s count=%d",
            context.reason,
            context.import_id,
            len(items),
        )
        return len(items)

    def reset(self) -> None:
        self._items = []
        self.last_refresh = None
        self.refreshed_at = None

    def search(
        self,
        query: Optional[str] = None,
        type: Optional[str] = None,
        engine: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[TemplateSummary], int]:
        matches = [
            item
            for item in self._items
            if (not type or item.type == type)
            and (not engine or item.engine == engine)
            and (not tags or set(tags) & set(item.tags))
        ]
        if query:
            scored = [(score_template(item, query), item) for item in matches]
            scored = [(score, item) for score, item in scored if score > 0]
            scored.sort(key=lambda pair: (pair[0], _timestamp(pair[1])), reverse=True)
            matches = [item for _, item in scored]
        else:
            matches.sort(key=_timestamp, reverse=True)
        return matches[offset : offset + limit], len(matches)
