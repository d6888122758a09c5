"""Database initialisation and seeding script.

Creates all tables and, when the database is empty, a small demo plant:
machines, operators (with badge QR labels), raw items, one stock item with a
bill of materials and routing, and a manufacturing order with two work
orders.  Safe to run twice: nothing is seeded if machines already exist.

Usage::

    python scripts/init_db.py
"""

import os

from shopfloor import create_app, db
from shopfloor.models import (
    BomLine, Employee, Machine, ManufacturingOrder, RawItem, StockItem,
    StockItemOperation, WorkOrder,
)
from shopfloor.qr_utils import save_label
from shopfloor.scan_classifier import build_barcode_id

app = create_app()

with app.app_context():
    db.create_all()

    if Machine.query.count() == 0:
        machines = [
            Machine(name="SNLS-01", type="Single Needle", model="DDL-9000", serial_number="SN-0001"),
            Machine(name="SNLS-02", type="Single Needle", model="DDL-9000", serial_number="SN-0002"),
            Machine(name="OL-01", type="Overlock", model="MO-6800", serial_number="OL-0001"),
            Machine(name="BH-01", type="Buttonhole", model="LBH-1790", serial_number="BH-0001",
                    status="Under Maintenance"),
        ]
        db.session.add_all(machines)

        operators = [
            Employee(first_name="Rajesh", last_name="Kumar", department="SLEEVE"),
            Employee(first_name="Priya", last_name="Sharma", department="BODY"),
            Employee(first_name="Amit", last_name="Singh", department="COLLAR"),
            Employee(first_name="Sunita", last_name="Devi", department="LINING"),
        ]
        db.session.add_all(operators)

        fabric = RawItem(name="Cotton Twill", sku="RM-TWILL", unit="m", quantity=500, min_stock=50)
        thread = RawItem(name="Poly Thread", sku="RM-THREAD", unit="cone", quantity=40, min_stock=10)
        buttons = RawItem(name="Horn Button", sku="RM-BTN", unit="pcs", quantity=300, min_stock=100)
        db.session.add_all([fabric, thread, buttons])
        db.session.flush()

        jacket = StockItem(name="Work Jacket", reference="FG-JKT-01")
        db.session.add(jacket)
        db.session.flush()
        db.session.add_all([
            BomLine(stock_item_id=jacket.id, raw_item_id=fabric.id, position=0, quantity=2.5, unit_cost=4.2),
            BomLine(stock_item_id=jacket.id, raw_item_id=thread.id, position=1, quantity=0.1, unit_cost=1.5),
            BomLine(stock_item_id=jacket.id, raw_item_id=buttons.id, position=2, quantity=6, unit_cost=0.2),
            StockItemOperation(stock_item_id=jacket.id, sequence=1, type="Sleeve attach",
                               machine_type="Single Needle", minutes=3, seconds=30),
            StockItemOperation(stock_item_id=jacket.id, sequence=2, type="Side seam",
                               machine_type="Overlock", minutes=2, seconds=0),
            StockItemOperation(stock_item_id=jacket.id, sequence=3, type="Buttonhole",
                               machine_type="Buttonhole", minutes=1, seconds=15),
        ])

        mo = ManufacturingOrder(mo_number="MO-0001")
        db.session.add(mo)
        db.session.flush()
        db.session.add_all([
            WorkOrder(work_order_id="WO-0001-A", manufacturing_order_id=mo.id,
                      stock_item_id=jacket.id, quantity=50),
            WorkOrder(work_order_id="WO-0001-B", manufacturing_order_id=mo.id,
                      stock_item_id=jacket.id, quantity=400),
        ])
        db.session.commit()

        label_dir = app.config["LABEL_DIR"]
        for op in operators:
            save_label(label_dir, op.id, f"operator_{op.id}.png")
        for wo in WorkOrder.query.all():
            for unit in range(1, 4):
                barcode = build_barcode_id(wo.id, unit)
                save_label(label_dir, barcode, f"{barcode}.png")

        print(f"Labels written to {os.path.abspath(label_dir)}")

    print("Database initialised.")
