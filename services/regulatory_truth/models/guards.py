"""
Append-only guards
==================

ORM listeners that refuse updates and deletes of immutable records.

Version: 0.1.0
"""

from typing import Any

from sqlalchemy import event, inspect

from services.regulatory_truth.errors import ImmutableRecordError


def changed_attributes(target: Any) -> list[str]:
    """Names of mapped attributes with pending changes on `target`."""
    state = inspect(target)
    return [attr.key for attr in state.attrs if attr.history.has_changes()]


def committed_value(target: Any, key: str) -> Any:
    """Value of `key` as last loaded from or flushed to the database."""
    history = inspect(target).attrs[key].history
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return None


def make_append_only(model: type, entity: str) -> None:
    """Attach listeners that reject any UPDATE or DELETE of `model` rows."""

    @event.listens_for(model, "before_update")
    def _reject_update(mapper: Any, connection: Any, target: Any) -> None:
        changed = changed_attributes(target)
        if changed:
            raise ImmutableRecordError(
                f"{entity} {target.id} is immutable",
                fields=changed,
            )

    @event.listens_for(model, "before_delete")
    def _reject_delete(mapper: Any, connection: Any, target: Any) -> None:
        raise ImmutableRecordError(f"{entity} {target.id} cannot be deleted")
