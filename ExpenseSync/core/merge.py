"""Reconciliation of a remote and a local snapshot of the same user record.

Policy:
    - Scalar fields and profile attributes: the remote value wins whenever both
      sides define the field; a field defined on one side only is kept.
    - Expenses and categories: union keyed by id, seeded from the remote side.
      On an id collision the remote copy is kept as a whole; elements are
      immutable by id, so there is no field-level merge inside an element.
    - Identity (id, email) always comes from the session.

There is no timestamp-based last-writer-wins: ``updatedAt`` is merged like any
other scalar.
"""
from typing import Dict, Optional

from .model import ElementId, Session, UserRecord, SCALAR_KEYS


def union_by_id(remote: Dict[ElementId, object], local: Dict[ElementId, object]) -> Dict[ElementId, object]:
    """Union two id-keyed collections, keeping the remote element on collisions."""
    merged = dict(remote)
    for element_id, element in local.items():
        if element_id not in merged:
            merged[element_id] = element
    return merged


def merge(remote: UserRecord, local: Optional[UserRecord], identity: Session) -> UserRecord:
    """Combine a remote and a local snapshot into one reconciled record.

    Pure and deterministic: neither input is modified.

    Args:
        remote: Snapshot read from the remote store.
        local: Snapshot read from the local cache, or None.
        identity: The authenticated session; supplies ``id`` and ``email``.

    Returns:
        UserRecord: The reconciled record.
    """
    if local is None:
        return remote.with_identity(identity)

    scalars = {}
    for attr in SCALAR_KEYS.values():
        value = getattr(remote, attr)
        scalars[attr] = value if value is not None else getattr(local, attr)

    profile = dict(local.profile)
    profile.update({k: v for k, v in remote.profile.items() if v is not None})

    return UserRecord(
        id=identity.user_id,
        email=identity.email or remote.email or local.email,
        categories=union_by_id(remote.categories, local.categories),
        expenses=union_by_id(remote.expenses, local.expenses),
        profile=profile,
        **scalars,
    )
