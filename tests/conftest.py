import pytest

from shopfloor import create_app, db
from shopfloor.models import (
    BomLine, Employee, Machine, ManufacturingOrder, RawItem, StockItem,
    StockItemOperation, WorkOrder,
)

ALICE = "64b7f0c2e4a1b2c3d4e5f601"
BOB = "64b7f0c2e4a1b2c3d4e5f602"
CAROL = "64b7f0c2e4a1b2c3d4e5f603"  # inactive
M1 = "m1" + "0" * 22
M2 = "m2" + "0" * 22
M3 = "m3" + "0" * 22
FABRIC = "rf" + "0" * 22
THREAD = "rt" + "0" * 22
JACKET = "sj" + "0" * 22
WO_ID = "WO-1001-A"


def seed():
    db.session.add_all([
        Employee(id=ALICE, first_name="Alice", last_name="Rao", department="SLEEVE"),
        Employee(id=BOB, first_name="Bob", last_name="Iyer", department="BODY"),
        Employee(id=CAROL, first_name="Carol", last_name="Das", department="BODY", status="inactive"),
        Machine(id=M1, name="SNLS-01", type="Single Needle", serial_number="SN-1"),
        Machine(id=M2, name="SNLS-02", type="Single Needle", serial_number="SN-2"),
        Machine(id=M3, name="OL-01", type="Overlock", serial_number="OL-1", status="Under Maintenance"),
        RawItem(id=FABRIC, name="Cotton Twill", sku="RM-TWILL", unit="m", quantity=5, min_stock=1),
        RawItem(id=THREAD, name="Poly Thread", sku="RM-THREAD", unit="cone", quantity=100, min_stock=10),
        StockItem(id=JACKET, name="Work Jacket", reference="FG-JKT"),
    ])
    db.session.flush()
    db.session.add_all([
        BomLine(stock_item_id=JACKET, raw_item_id=FABRIC, position=0, quantity=2, unit_cost=4.0),
        BomLine(stock_item_id=JACKET, raw_item_id=THREAD, position=1, quantity=0.5, unit_cost=1.0),
        StockItemOperation(stock_item_id=JACKET, sequence=1, type="Sleeve attach",
                           machine_type="Single Needle", minutes=3, seconds=30),
    ])
    mo = ManufacturingOrder(mo_number="MO-1001")
    db.session.add(mo)
    db.session.flush()
    db.session.add(WorkOrder(work_order_id=WO_ID, manufacturing_order_id=mo.id,
                             stock_item_id=JACKET, quantity=4))
    db.session.commit()


@pytest.fixture()
def app():
    app = create_app(testing=True)
    with app.app_context():
        db.create_all()
        seed()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()

