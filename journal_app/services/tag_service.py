"""
Tag Service

Resolves tag references on trade payloads. A reference is either an existing
tag id or a free-text name; unknown names create a tag in the requested
category. Resolution only flushes, so new tags commit or roll back together
with the trade that references them.
"""

import logging
from typing import Dict, List, Union

from sqlalchemy import func

from ..errors import NotFoundError, ValidationError
from ..models import db, Tag, TAG_CATEGORIES

logger = logging.getLogger(__name__)

DEFAULT_TAGS = {
    'STRATEGY': [
        ('Breakout', '#2563eb'),
        ('Pullback', '#0891b2'),
        ('Reversal', '#7c3aed'),
        ('Momentum', '#16a34a'),
        ('Scalping', '#ea580c'),
    ],
    'EMOTIONAL': [
        ('Calm', '#16a34a'),
        ('Confident', '#2563eb'),
        ('Anxious', '#f59e0b'),
        ('Greedy', '#dc2626'),
        ('Fearful', '#9333ea'),
    ],
    'MARKET': [
        ('Trending', '#16a34a'),
        ('Range Bound', '#6b7280'),
        ('Volatile', '#dc2626'),
        ('Gap Up', '#2563eb'),
        ('Gap Down', '#f97316'),
    ],
}


def _is_id(reference) -> bool:
    if isinstance(reference, bool):
        return False
    if isinstance(reference, int):
        return True
    return isinstance(reference, str) and reference.strip().isdigit()


class TagService:
    """Find-or-create tags by id or name"""

    def resolve_or_create(self, reference: Union[int, str], category: str) -> Tag:
        category = category.upper()
        if category not in TAG_CATEGORIES:
            raise ValidationError({'category': [f'Unknown tag category: {category}']})

        if _is_id(reference):
            tag = db.session.get(Tag, int(reference))
            if tag is None:
                raise NotFoundError(f'Tag {reference} not found')
            if tag.category != category:
                raise ValidationError({f'{category.lower()}_tags': [
                    f'Tag {tag.name} belongs to {tag.category}, not {category}']})
            return tag

        name = str(reference).strip()
        if not name:
            raise ValidationError({f'{category.lower()}_tags': ['Tag name cannot be empty']})

        tag = Tag.query.filter(
            Tag.category == category,
            func.lower(Tag.name) == name.lower(),
        ).first()
        if tag is not None:
            return tag

        tag = Tag(name=name, category=category)
        db.session.add(tag)
        db.session.flush()
        logger.info(f"Created {category} tag '{name}'")
        return tag

    def resolve_many(self, references: List[Union[int, str]], category: str) -> List[Tag]:
        """Resolve a list of references, dropping repeats while keeping order"""
        tags = []
        for reference in references or []:
            tag = self.resolve_or_create(reference, category)
            if tag not in tags:
                tags.append(tag)
        return tags

    def list_tags(self, category: str = None, active_only: bool = True) -> List[Dict]:
        query = Tag.query
        if category:
            query = query.filter(Tag.category == category.upper())
        if active_only:
            query = query.filter(Tag.is_active.is_(True))
        return [tag.to_dict() for tag in query.order_by(Tag.category, Tag.name).all()]

    def seed_defaults(self) -> int:
        """Insert the default tag set; existing names are left untouched"""
        created = 0
        for category, tags in DEFAULT_TAGS.items():
            for name, color in tags:
                exists = Tag.query.filter_by(category=category, name=name).first()
                if exists is None:
                    db.session.add(Tag(name=name, category=category, color=color))
                    created += 1
        db.session.commit()
        return created
