"""Classify a resubmitted child set against the persisted one by id."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Iterable, Sequence, TypeVar

E = TypeVar("E")  # Persisted child record
S = TypeVar("S")  # Submitted child input

BOX_FIELDS: tuple[str, ...] = ("box_number", "length", "width", "height")
PRODUCT_FIELDS: tuple[str, ...] = (
    "type",
    "description",
    "weight",
    "rate",
    "quantity",
    "flower_type",
    "has_stems",
    "approx_quantity",
)


@dataclass(slots=True)
class ChildDiff(Generic[E, S]):
    """Classification of a submitted child set against the persisted one."""

    to_update: list[tuple[E, S]] = field(default_factory=list)  # Same id, fields differ
    to_add: list[S] = field(default_factory=list)  # No id, or id unknown to the store
    to_delete: list[E] = field(default_factory=list)  # Persisted, not resubmitted
    unchanged: list[tuple[E, S]] = field(default_factory=list)  # Same id, same fields

    @property
    def is_empty(self) -> bool:
        return not (self.to_update or self.to_add or self.to_delete)

    @property
    def summary(self) -> dict[str, int]:
        return {
            "update": len(self.to_update),
            "add": len(self.to_add),
            "delete": len(self.to_delete),
            "unchanged": len(self.unchanged),
        }


def fields_differ(existing: Any, submitted: Any, fields: Sequence[str]) -> bool:
    return any(getattr(existing, name) != getattr(submitted, name) for name in fields)


def diff_children(
    existing: Iterable[E],
    submitted: Iterable[S],
    fields: Sequence[str],
    descendants_differ: Callable[[E, S], bool] | None = None,
) -> ChildDiff[E, S]:
    """Compare persisted children with a resubmitted set and classify each one.

    Both sides are matched on ``id``. A submitted child without an id, or
    with an id the store has never seen, is an add; it is never dropped.
    A matched child is an update when one of ``fields`` differs or when
    ``descendants_differ`` reports a change further down its subtree.
    """

    existing_by_id: dict[str, E] = {getattr(e, "id"): e for e in existing}

    diff: ChildDiff[E, S] = ChildDiff()
    seen_ids: set[str] = set()
    for child in submitted:
        child_id = getattr(child, "id", None)
        if not child_id:
            diff.to_add.append(child)
            continue
        if child_id in seen_ids:
            raise ValueError(f"duplicate child id in submission: {child_id}")
        seen_ids.add(child_id)

        current = existing_by_id.get(child_id)
        if current is None:
            diff.to_add.append(child)
        elif fields_differ(current, child, fields) or (
            descendants_differ is not None and descendants_differ(current, child)
        ):
            diff.to_update.append((current, child))
        else:
            diff.unchanged.append((current, child))

    # Persisted ids absent from the submission
    diff.to_delete = [e for rid, e in existing_by_id.items() if rid not in seen_ids]
    return diff


def diff_products(existing: Iterable[E], submitted: Iterable[S]) -> ChildDiff[E, S]:
    return diff_children(existing, submitted, PRODUCT_FIELDS)


def diff_boxes(
    existing: Iterable[E],
    submitted: Iterable[S],
    products_of: Callable[[E], Iterable[Any]] | None = None,
) -> ChildDiff[E, S]:
    """Diff boxes; with ``products_of`` a box whose products changed is an update."""

    def products_differ(current: E, box: S) -> bool:
        products = getattr(box, "products", None)
        if products is None:  # Products left untouched
            return False
        return not diff_products(products_of(current), products).is_empty

    return diff_children(
        existing, submitted, BOX_FIELDS, products_differ if products_of else None
    )


__all__ = [
    "BOX_FIELDS",
    "ChildDiff",
    "PRODUCT_FIELDS",
    "diff_boxes",
    "diff_children",
    "diff_products",
    "fields_differ",
]
