"""Data model for the synchronized user record.

A :class:`UserRecord` is the unit of synchronization: one per user, holding the
profile, the monthly limit and the expense and category collections. Expenses
and categories are immutable by id; a record only ever gains or loses whole
elements.

The persisted and remote shape is a JSON-compatible dict with camelCase keys,
produced by :meth:`UserRecord.to_dict` and read back by
:meth:`UserRecord.from_dict`.
"""
import dataclasses
import datetime
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Type, TypeVar, Union

from ..status.status import Status, get_message

ElementId = Union[str, int]

# Wire key -> attribute name for the scalar fields of a record
SCALAR_KEYS: Dict[str, str] = {
    'name': 'name',
    'avatarUrl': 'avatar_url',
    'monthlyLimit': 'monthly_limit',
    'updatedAt': 'updated_at',
}
KEY_ALIASES: Dict[str, str] = {
    'avatar': 'avatarUrl',
}
IDENTITY_KEYS = ('id', 'email')
COLLECTION_KEYS = ('expenses', 'categories')

REASON_NOTHING_TO_SYNC: str = get_message(Status.NothingToSync)
REASON_UNREACHABLE: str = 'remote unreachable'
REASON_NOT_AUTHENTICATED: str = 'not authenticated'


def now_str() -> str:
    """Return current UTC date and time as an ISO 8601 string."""
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def _verify_id(value: Any, kind: str) -> ElementId:
    if isinstance(value, bool) or not isinstance(value, (str, int)) or value == '':
        raise ValueError(f'{kind} id must be a non-empty string or an integer, got {value!r}.')
    return value


@dataclass(frozen=True)
class Expense:
    """One expense entry. Never edited in place; replace it with a new id instead."""
    id: ElementId
    amount: Any = None
    category_id: Optional[ElementId] = None
    date: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping) -> 'Expense':
        if not isinstance(data, Mapping):
            raise ValueError(f'Expense must be a mapping, got {type(data).__name__}.')
        if 'id' not in data:
            raise ValueError('Expense is missing "id".')
        metadata = {k: v for k, v in data.items() if k not in ('id', 'amount', 'categoryId', 'date')}
        return cls(
            id=_verify_id(data['id'], 'Expense'),
            amount=data.get('amount'),
            category_id=data.get('categoryId'),
            date=data.get('date'),
            metadata=metadata,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.metadata)
        data['id'] = self.id
        if self.amount is not None:
            data['amount'] = self.amount
        if self.category_id is not None:
            data['categoryId'] = self.category_id
        if self.date is not None:
            data['date'] = self.date
        return data


@dataclass(frozen=True)
class Category:
    """A category with a label and free-form display attributes (color, icon...)."""
    id: ElementId
    label: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping) -> 'Category':
        if not isinstance(data, Mapping):
            raise ValueError(f'Category must be a mapping, got {type(data).__name__}.')
        if 'id' not in data:
            raise ValueError('Category is missing "id".')
        attributes = {k: v for k, v in data.items() if k not in ('id', 'label')}
        return cls(
            id=_verify_id(data['id'], 'Category'),
            label=data.get('label'),
            attributes=attributes,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.attributes)
        data['id'] = self.id
        if self.label is not None:
            data['label'] = self.label
        return data


Element = TypeVar('Element', Expense, Category)


def collection_from_items(
        items: Optional[Iterable[Any]],
        element_type: Type[Element],
        strict: bool = True
) -> Dict[ElementId, Element]:
    """Build an id-keyed collection from elements or element dicts.

    Args:
        items: Elements, element dicts, or None for an empty collection.
        element_type: :class:`Expense` or :class:`Category`.
        strict: Raise on a duplicate id. When False the first element wins and
            the duplicate is logged and dropped.

    Returns:
        Dict mapping element id to element.

    Raises:
        ValueError: If an element is malformed, or a duplicate id is found in strict mode.
    """
    if items is None:
        return {}
    if isinstance(items, (str, bytes, Mapping)) or not isinstance(items, Iterable):
        raise ValueError(f'{element_type.__name__} collection must be a list, got {type(items).__name__}.')

    collection: Dict[ElementId, Element] = {}
    for item in items:
        element = item if isinstance(item, element_type) else element_type.from_dict(item)
        if element.id in collection:
            if strict:
                raise ValueError(f'Duplicate {element_type.__name__.lower()} id {element.id!r}.')
            logging.warning(f'Dropping duplicate {element_type.__name__.lower()} id {element.id!r}.')
            continue
        collection[element.id] = element
    return collection


def _sorted_dicts(collection: Dict[ElementId, Any]) -> list:
    return [collection[k].to_dict() for k in sorted(collection, key=lambda k: (str(type(k)), k))]


@dataclass(frozen=True)
class Session:
    """Identity of the authenticated user, as supplied by the account service."""
    user_id: str
    email: Optional[str] = None

    def __post_init__(self):
        if not self.user_id:
            raise ValueError('Session requires a user id.')


@dataclass
class UserRecord:
    """The full synchronized data of one user.

    ``None`` marks an undefined scalar field. ``profile`` carries any other
    profile attribute (``username``, ``createdAt``, ``lastLogin``...) through
    unchanged.
    """
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    monthly_limit: Optional[Union[int, float]] = None
    categories: Dict[ElementId, Category] = field(default_factory=dict)
    expenses: Dict[ElementId, Expense] = field(default_factory=dict)
    updated_at: Optional[str] = None
    profile: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def seed(cls, session: Session, profile: Optional[Mapping] = None) -> 'UserRecord':
        """Create a new record for a session from an initial profile and empty collections."""
        record = cls(id=session.user_id, email=session.email)
        if profile:
            record = record.overlay(profile)
        return record

    @classmethod
    def from_dict(cls, data: Any) -> 'UserRecord':
        """Decode a record from its dict shape.

        Duplicate element ids in stored data are tolerated (first one wins).

        Raises:
            ValueError: If the payload is not a record.
        """
        if not isinstance(data, Mapping):
            raise ValueError(f'User record must be a mapping, got {type(data).__name__}.')
        record_id = data.get('id')
        if not isinstance(record_id, str) or not record_id:
            raise ValueError(f'User record has no valid "id": {record_id!r}.')

        values: Dict[str, Any] = {}
        profile: Dict[str, Any] = {}
        for key, value in data.items():
            if key in KEY_ALIASES and KEY_ALIASES[key] in data:
                continue
            key = KEY_ALIASES.get(key, key)
            if key in IDENTITY_KEYS or key in COLLECTION_KEYS:
                continue
            if key in SCALAR_KEYS:
                values[SCALAR_KEYS[key]] = value
            else:
                profile[key] = value

        return cls(
            id=record_id,
            email=data.get('email'),
            categories=collection_from_items(data.get('categories'), Category, strict=False),
            expenses=collection_from_items(data.get('expenses'), Expense, strict=False),
            profile=profile,
            **values,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Encode the record. Undefined scalars are omitted; collections are id-sorted lists."""
        data: Dict[str, Any] = dict(self.profile)
        data['id'] = self.id
        if self.email is not None:
            data['email'] = self.email
        for key, attr in SCALAR_KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                data[key] = value
        data['categories'] = _sorted_dicts(self.categories)
        data['expenses'] = _sorted_dicts(self.expenses)
        return data

    def overlay(self, partial: Union[Mapping, 'UserRecord']) -> 'UserRecord':
        """Return a new record with the fields present in ``partial`` applied.

        Collections present in the partial replace the collection. Identity
        fields and ``updatedAt`` are ignored, and so are ``None`` values.

        Raises:
            TypeError: If partial is not a mapping or a record.
            ValueError: If a collection in the partial is malformed or has duplicate ids.
        """
        if isinstance(partial, UserRecord):
            partial = partial.to_dict()
        if not isinstance(partial, Mapping):
            raise TypeError(f'Partial update must be a mapping, got {type(partial).__name__}.')

        changes: Dict[str, Any] = {}
        profile = dict(self.profile)
        for key, value in partial.items():
            key = KEY_ALIASES.get(key, key)
            if key in IDENTITY_KEYS or key == 'updatedAt' or value is None:
                continue
            if key == 'expenses':
                changes['expenses'] = collection_from_items(value, Expense)
            elif key == 'categories':
                changes['categories'] = collection_from_items(value, Category)
            elif key in SCALAR_KEYS:
                changes[SCALAR_KEYS[key]] = value
            else:
                profile[key] = value

        return dataclasses.replace(self, profile=profile, **changes)

    def with_identity(self, session: Session) -> 'UserRecord':
        """Return a copy carrying the session's id and email."""
        return dataclasses.replace(self, id=session.user_id, email=session.email or self.email)

    def stamped(self, timestamp: Optional[str] = None) -> 'UserRecord':
        """Return a copy with ``updated_at`` set to ``timestamp`` or now."""
        return dataclasses.replace(self, updated_at=timestamp or now_str())

    def same_content(self, other: Optional['UserRecord']) -> bool:
        """Compare two records ignoring ``updated_at``."""
        if other is None:
            return False
        return dataclasses.replace(self, updated_at=None) == dataclasses.replace(other, updated_at=None)


@dataclass
class SyncResult:
    """Outcome of a save or a reconciliation.

    Attributes:
        record: The resulting record, if any.
        degraded: True when the record is durable locally but not confirmed remotely.
        success: False when the operation could not complete (see ``reason``).
        reason: Explanation for a failed operation.
        status: Classified status of the outcome.
    """
    record: Optional[UserRecord] = None
    degraded: bool = False
    success: bool = True
    reason: str = ''
    status: Status = Status.Okay

    @property
    def confirmed(self) -> bool:
        return self.success and not self.degraded

    @classmethod
    def failure(cls, stat: Status, reason: str, record: Optional[UserRecord] = None,
                degraded: bool = False) -> 'SyncResult':
        return cls(record=record, degraded=degraded, success=False, reason=reason, status=stat)
