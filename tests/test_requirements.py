import pytest

from conftest import FABRIC, JACKET, THREAD
from shopfloor.errors import NotFound
from shopfloor.requirements import requirement_for, requirements


def test_deficit_is_reported_when_stock_is_short():
    req = requirement_for("r1", qty_per_unit=4, build_quantity=2, available=5)
    assert req.required_quantity == 8
    assert req.assigned_quantity == 5
    assert req.deficit_quantity == 3
    assert req.status == "partially_assigned"


def test_fully_covered_requirement():
    req = requirement_for("r1", qty_per_unit=1, build_quantity=3, available=10, unit_cost=2)
    assert (req.assigned_quantity, req.deficit_quantity, req.status) == (3, 0, "assigned")
    assert req.total_cost == 6


def test_nothing_in_stock_is_unavailable():
    req = requirement_for("r1", qty_per_unit=1, build_quantity=3, available=0)
    assert (req.assigned_quantity, req.deficit_quantity, req.status) == (0, 3, "unavailable")


def test_requirements_walk_the_bill_of_materials(app):
    reqs = {r.raw_item_id: r for r in requirements(JACKET, 4)}
    assert set(reqs) == {FABRIC, THREAD}
    assert reqs[FABRIC].required_quantity == 8
    assert reqs[FABRIC].assigned_quantity == 5
    assert reqs[FABRIC].status == "partially_assigned"
    assert reqs[THREAD].required_quantity == 2
    assert reqs[THREAD].status == "assigned"
    assert reqs[FABRIC].to_dict()["name"] == "Cotton Twill"


def test_unknown_stock_item(app):
    with pytest.raises(NotFound):
        requirements("nope", 1)
