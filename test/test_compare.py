import pytest

from shipment_sync.compare import diff_boxes, diff_children, diff_products
from shipment_sync.model import Box, BoxInput, Product, ProductInput


def _box(box_id, label="Box", **kwargs):
    return Box(id=box_id, shipment_id="CS0001", box_number=label, **kwargs)


def _product(product_id, box_id="B1", **kwargs):
    return Product(id=product_id, box_id=box_id, type="Rose", **kwargs)


# --------------------------------------------------------------------
# CHILD DIFF TESTS
# --------------------------------------------------------------------
def test_diff_partitions_union_of_ids():
    """Every existing and submitted child lands in exactly one bucket."""
    existing = [_box("B1", "Box 1"), _box("B2", "Box 2"), _box("B3", "Box 3")]
    submitted = [
        BoxInput(box_number="Box 1", id="B1"),  # unchanged
        BoxInput(box_number="Box 2 (large)", id="B2"),  # updated
        BoxInput(box_number="Box 4"),  # new, no id
        BoxInput(box_number="Box 5", id="B9"),  # unknown id
    ]

    diff = diff_boxes(existing, submitted)

    assert [b.id for _, b in diff.unchanged] == ["B1"]
    assert [b.id for _, b in diff.to_update] == ["B2"]
    assert [b.box_number for b in diff.to_add] == ["Box 4", "Box 5"]
    assert [b.id for b in diff.to_delete] == ["B3"]
    assert diff.summary == {"update": 1, "add": 2, "delete": 1, "unchanged": 1}


def test_identical_submission_is_empty_diff():
    existing = [_product("P1", weight=5.0), _product("P2", weight=1.5, has_stems=True)]
    submitted = [
        ProductInput(type="Rose", id="P1", weight=5.0),
        ProductInput(type="Rose", id="P2", weight=1.5, has_stems=True),
    ]

    diff = diff_products(existing, submitted)

    assert diff.is_empty
    assert diff.to_update == []
    assert len(diff.unchanged) == 2


def test_unknown_id_is_treated_as_add_not_dropped():
    diff = diff_products([], [ProductInput(type="Lily", id="GHOST")])
    assert [p.id for p in diff.to_add] == ["GHOST"]
    assert diff.to_delete == []


def test_empty_submission_deletes_everything():
    existing = [_box("B1"), _box("B2")]
    diff = diff_boxes(existing, [])
    assert [b.id for b in diff.to_delete] == ["B1", "B2"]
    assert not diff.to_add and not diff.to_update


def test_duplicate_submitted_id_rejected():
    with pytest.raises(ValueError, match="duplicate"):
        diff_children([], [BoxInput("A", id="B1"), BoxInput("B", id="B1")], ("box_number",))


def test_box_with_changed_products_is_update():
    """Box fields equal but a product weight changed."""
    existing = [_box("B1", "Box 1")]
    products = {"B1": [_product("P1", weight=5.0)]}
    submitted = [
        BoxInput("Box 1", id="B1", products=[ProductInput(type="Rose", id="P1", weight=7.5)])
    ]

    diff = diff_boxes(existing, submitted, products_of=lambda box: products[box.id])

    assert [b.id for _, b in diff.to_update] == ["B1"]
    assert diff.unchanged == []


def test_box_with_untouched_products_is_unchanged():
    existing = [_box("B1", "Box 1")]
    submitted = [BoxInput("Box 1", id="B1", products=None)]

    diff = diff_boxes(existing, submitted, products_of=lambda box: [_product("P1")])

    assert [b.id for _, b in diff.unchanged] == ["B1"]
