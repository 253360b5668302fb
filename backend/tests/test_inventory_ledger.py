# Overview: Pytest coverage for the inventory ledger (stock column + append-only movements).

from datetime import datetime

import pytest

from storefront.errors import ConcurrencyError, InsufficientStockError, NotFoundError, ValidationError
from storefront.extensions import db
from storefront.models import InventoryMovement, Product, ProductVariant
from storefront.models.catalog import PRODUCT_STATUS_INSTOCK, PRODUCT_STATUS_LOW_STOCK, PRODUCT_STATUS_OUT_OF_STOCK
from storefront.services import inventory_service
from storefront.services.concurrency import run_in_transaction
from storefront.services.inventory_service import (
    MOVEMENT_ADDED,
    MOVEMENT_ADJUSTED,
    MOVEMENT_REMOVED,
    MOVEMENT_REVERTED,
    REFERENCE_MANUAL,
    REFERENCE_ORDER,
    adjust_inventory,
    derive_product_status,
    get_stock_level,
    list_inventory_movements,
    record_movement,
    revert_movement,
    verify_ledger,
)


def _record(**kwargs):
    return run_in_transaction(lambda: record_movement(**kwargs))


def _movements(variant_id):
    return InventoryMovement.query.filter_by(variant_id=variant_id).order_by(InventoryMovement.id).all()


class TestRecordMovement:
    def test_remove_writes_column_and_row(self, db_session, make_variant):
        variant = make_variant(stock=10)

        m = _record(
            product_id=variant.product_id,
            variant_id=variant.id,
            movement_type=MOVEMENT_REMOVED,
            quantity_change=-4,
            reference_type=REFERENCE_ORDER,
            reference_id=1,
        )

        assert (m.quantity_before, m.quantity_change, m.quantity_after) == (10, -4, 6)
        assert get_stock_level(variant.product_id, variant.id) == 6
        assert m.vendor_id == variant.vendor_id
        assert m.branch_id == variant.branch_id

    def test_every_row_satisfies_arithmetic_and_matches_live_column(self, db_session, make_variant):
        variant = make_variant(stock=20)
        pid, vid = variant.product_id, variant.id

        for movement_type, change in [
            (MOVEMENT_REMOVED, -5),
            (MOVEMENT_ADDED, 7),
            (MOVEMENT_ADJUSTED, -3),
            (MOVEMENT_REMOVED, -19),
            (MOVEMENT_ADJUSTED, 2),
        ]:
            m = _record(product_id=pid, variant_id=vid, movement_type=movement_type, quantity_change=change)
            assert m.quantity_after == m.quantity_before + m.quantity_change
            assert get_stock_level(pid, vid) == m.quantity_after

        report = verify_ledger(pid, vid)
        assert report["ok"], report["problems"]
        assert report["movement_count"] == 6
        assert report["live_quantity"] == 2

    def test_decrement_below_zero_rejected_without_changes(self, db_session, make_variant):
        variant = make_variant(stock=3)
        pid, vid = variant.product_id, variant.id
        rows_before = InventoryMovement.query.count()

        with pytest.raises(InsufficientStockError) as exc:
            _record(product_id=pid, variant_id=vid, movement_type=MOVEMENT_REMOVED, quantity_change=-4)

        assert exc.value.available == 3
        assert exc.value.requested == 4
        assert exc.value.details["shortfall"] == 1
        assert get_stock_level(pid, vid) == 3
        assert InventoryMovement.query.count() == rows_before

    def test_remove_exactly_to_zero_allowed(self, db_session, make_variant):
        variant = make_variant(stock=10)
        m = _record(
            product_id=variant.product_id,
            variant_id=variant.id,
            movement_type=MOVEMENT_REMOVED,
            quantity_change=-10,
        )
        assert m.quantity_after == 0
        assert db.session.get(ProductVariant, variant.id).product_status == PRODUCT_STATUS_OUT_OF_STOCK

    def test_product_without_variant_is_its_own_carrier(self, db_session, make_product):
        product = make_product(stock=8)
        m = _record(product_id=product.id, movement_type=MOVEMENT_REMOVED, quantity_change=-2)
        assert m.variant_id is None
        assert db.session.get(Product, product.id).quantity == 6

    @pytest.mark.parametrize(
        "movement_type,change",
        [
            (MOVEMENT_ADDED, -1),
            (MOVEMENT_REVERTED, -1),
            (MOVEMENT_REMOVED, 1),
            (MOVEMENT_ADDED, 0),
            ("SHRINK", -1),
        ],
    )
    def test_sign_rules(self, db_session, make_variant, movement_type, change):
        variant = make_variant(stock=5)
        with pytest.raises(ValidationError):
            _record(
                product_id=variant.product_id,
                variant_id=variant.id,
                movement_type=movement_type,
                quantity_change=change,
            )

    def test_product_with_variants_has_no_product_level_stock(self, db_session, make_variant):
        variant = make_variant(stock=5)
        with pytest.raises(ValidationError, match="per variant"):
            _record(product_id=variant.product_id, movement_type=MOVEMENT_ADDED, quantity_change=3)
        assert db.session.get(Product, variant.product_id, populate_existing=True).quantity == 0
        assert get_stock_level(variant.product_id, variant.id) == 5

    def test_unknown_variant_not_found(self, db_session, make_product):
        product = make_product(stock=1)
        with pytest.raises(NotFoundError):
            _record(product_id=product.id, variant_id=99999, movement_type=MOVEMENT_ADDED, quantity_change=1)

    def test_rows_are_immutable(self, db_session, make_variant):
        variant = make_variant(stock=5)
        m = _movements(variant.id)[0]
        m.notes = "rewritten history"
        with pytest.raises(ValueError):
            db.session.flush()
        db.session.rollback()


class TestTargetQuantityAdjustment:
    def test_delta_derived_from_target(self, db_session, make_variant):
        variant = make_variant(stock=10)
        m = _record(
            product_id=variant.product_id,
            variant_id=variant.id,
            movement_type=MOVEMENT_ADJUSTED,
            target_quantity=4,
        )
        assert (m.quantity_before, m.quantity_change, m.quantity_after) == (10, -6, 4)
        assert get_stock_level(variant.product_id, variant.id) == 4

    def test_target_equal_to_current_rejected(self, db_session, make_variant):
        variant = make_variant(stock=10)
        with pytest.raises(ValidationError):
            _record(
                product_id=variant.product_id,
                variant_id=variant.id,
                movement_type=MOVEMENT_ADJUSTED,
                target_quantity=10,
            )

    def test_target_only_for_adjusted(self, db_session, make_variant):
        variant = make_variant(stock=10)
        with pytest.raises(ValidationError):
            _record(
                product_id=variant.product_id,
                variant_id=variant.id,
                movement_type=MOVEMENT_ADDED,
                target_quantity=12,
            )

    def test_stock_moved_between_read_and_swap(self, db_session, make_variant, monkeypatch):
        variant = make_variant(stock=10)
        pid, vid = variant.product_id, variant.id
        real_execute = db.session.execute
        state = {"raced": False}

        def racing_execute(statement, *args, **kwargs):
            # A concurrent order removes 1 unit right after the quantity read
            result = real_execute(statement, *args, **kwargs)
            if not state["raced"] and getattr(statement, "is_select", False):
                state["raced"] = True
                real_execute(
                    ProductVariant.__table__.update()
                    .where(ProductVariant.id == vid)
                    .values(quantity=ProductVariant.quantity - 1)
                )
            return result

        def _op():
            inventory_service.resolve_stock_carrier(pid, vid)
            monkeypatch.setattr(db.session, "execute", racing_execute)
            return record_movement(
                product_id=pid,
                variant_id=vid,
                movement_type=MOVEMENT_ADJUSTED,
                target_quantity=4,
            )

        with pytest.raises(ConcurrencyError):
            run_in_transaction(_op)
        monkeypatch.undo()
        assert get_stock_level(pid, vid) == 10


class TestRevert:
    def test_revert_restores_exact_magnitude_once(self, db_session, make_variant):
        variant = make_variant(stock=10)
        pid, vid = variant.product_id, variant.id
        removed = _record(
            product_id=pid,
            variant_id=vid,
            movement_type=MOVEMENT_REMOVED,
            quantity_change=-7,
            reference_type=REFERENCE_ORDER,
            reference_id=55,
        )

        reverted = run_in_transaction(lambda: revert_movement(db.session.get(InventoryMovement, removed.id)))
        assert reverted.movement_type == MOVEMENT_REVERTED
        assert reverted.quantity_change == 7
        assert reverted.reverts_movement_id == removed.id
        assert reverted.reference_type == REFERENCE_ORDER
        assert reverted.reference_id == 55
        assert get_stock_level(pid, vid) == 10

        with pytest.raises(ValidationError):
            run_in_transaction(lambda: revert_movement(db.session.get(InventoryMovement, removed.id)))
        assert get_stock_level(pid, vid) == 10

    def test_only_removed_can_be_reverted(self, db_session, make_variant):
        variant = make_variant(stock=10)
        added = _movements(variant.id)[0]
        with pytest.raises(ValidationError):
            run_in_transaction(lambda: revert_movement(added))


class TestProductStatus:
    @pytest.mark.parametrize(
        "quantity,threshold,expected",
        [
            (0, 0, PRODUCT_STATUS_OUT_OF_STOCK),
            (-1, 3, PRODUCT_STATUS_OUT_OF_STOCK),
            (3, 3, PRODUCT_STATUS_LOW_STOCK),
            (4, 3, PRODUCT_STATUS_INSTOCK),
            (4, 0, PRODUCT_STATUS_LOW_STOCK),
            (5, 0, PRODUCT_STATUS_INSTOCK),
        ],
    )
    def test_derive_product_status(self, app, quantity, threshold, expected):
        assert derive_product_status(quantity, threshold) == expected

    def test_status_follows_stock_writes(self, db_session, make_variant):
        variant = make_variant(stock=12, threshold_stock=5)
        pid, vid = variant.product_id, variant.id
        assert db.session.get(ProductVariant, vid).product_status == PRODUCT_STATUS_INSTOCK

        _record(product_id=pid, variant_id=vid, movement_type=MOVEMENT_REMOVED, quantity_change=-8)
        assert db.session.get(ProductVariant, vid).product_status == PRODUCT_STATUS_LOW_STOCK

    def test_stock_write_replaces_carrier_stamp(self, db_session, make_variant):
        variant = make_variant(stock=12)
        before = variant.concurrency_stamp
        _record(product_id=variant.product_id, variant_id=variant.id, movement_type=MOVEMENT_ADDED, quantity_change=1)
        assert db.session.get(ProductVariant, variant.id).concurrency_stamp != before


class TestAdjustInventory:
    def test_positive_change_records_added(self, db_session, make_variant, vendor_admin):
        variant = make_variant(stock=5)
        m = adjust_inventory(
            product_id=variant.product_id,
            variant_id=variant.id,
            quantity_change=3,
            notes="Found in back room",
            user_id=vendor_admin.id,
        )
        assert m.movement_type == MOVEMENT_ADDED
        assert m.reference_type == REFERENCE_MANUAL
        assert m.reference_id == variant.product_id
        assert m.user_id == vendor_admin.id
        assert m.notes == "Found in back room"

    def test_negative_change_records_adjusted(self, db_session, make_variant):
        variant = make_variant(stock=5)
        m = adjust_inventory(product_id=variant.product_id, variant_id=variant.id, quantity_change=-2)
        assert m.movement_type == MOVEMENT_ADJUSTED
        assert m.quantity_change == -2

    def test_negative_change_cannot_go_below_zero(self, db_session, make_variant):
        variant = make_variant(stock=5)
        with pytest.raises(InsufficientStockError):
            adjust_inventory(product_id=variant.product_id, variant_id=variant.id, quantity_change=-6)

    def test_vendor_scope_enforced(self, db_session, make_variant, other_vendor_branch):
        variant = make_variant(stock=5)
        with pytest.raises(ValidationError):
            adjust_inventory(
                product_id=variant.product_id,
                variant_id=variant.id,
                quantity_change=1,
                vendor_id=other_vendor_branch.vendor_id,
            )
        assert get_stock_level(variant.product_id, variant.id) == 5


class TestMovementHistory:
    def test_filters_and_pagination(self, db_session, make_variant):
        a = make_variant(name="A", stock=10)
        b = make_variant(name="B", stock=10)
        for _ in range(3):
            _record(product_id=a.product_id, variant_id=a.id, movement_type=MOVEMENT_REMOVED, quantity_change=-1)
        _record(product_id=b.product_id, variant_id=b.id, movement_type=MOVEMENT_REMOVED, quantity_change=-1)

        result = list_inventory_movements(variant_id=a.id, movement_type=MOVEMENT_REMOVED, page_size=2)
        assert result["pagination"] == {"page_size": 2, "page_number": 1, "total_count": 3}
        assert len(result["items"]) == 2
        # Newest first
        assert result["items"][0].id > result["items"][1].id

        page2 = list_inventory_movements(variant_id=a.id, movement_type=MOVEMENT_REMOVED, page_size=2, page_number=2)
        assert len(page2["items"]) == 1

    def test_date_range_bounds_are_inclusive(self, db_session, make_variant):
        variant = make_variant(stock=10)
        for _ in range(3):
            _record(product_id=variant.product_id, variant_id=variant.id, movement_type=MOVEMENT_REMOVED, quantity_change=-1)
        rows = _movements(variant.id)
        days = [datetime(2026, 1, 1), datetime(2026, 1, 2, 12, 30), datetime(2026, 1, 3), datetime(2026, 1, 4)]
        for row, day in zip(rows, days):
            db.session.execute(
                InventoryMovement.__table__.update().where(InventoryMovement.id == row.id).values(created_at=day)
            )
        db.session.commit()
        ids = [r.id for r in rows]

        exact = list_inventory_movements(variant_id=variant.id, date_from=days[1], date_to=days[2])
        assert {m.id for m in exact["items"]} == {ids[1], ids[2]}

        single = list_inventory_movements(variant_id=variant.id, date_from=days[1], date_to=days[1])
        assert [m.id for m in single["items"]] == [ids[1]]

        after = list_inventory_movements(variant_id=variant.id, date_from=datetime(2026, 1, 3, 0, 0, 1))
        assert [m.id for m in after["items"]] == [ids[3]]

        before = list_inventory_movements(variant_id=variant.id, date_to=datetime(2025, 12, 31))
        assert before["items"] == []

    def test_vendor_branch_and_reference_filters(self, db_session, make_variant, make_product, other_vendor_branch):
        ours = make_variant(stock=10)
        theirs = make_product(title="Theirs", stock=4, branch_obj=other_vendor_branch)
        _record(
            product_id=ours.product_id,
            variant_id=ours.id,
            movement_type=MOVEMENT_REMOVED,
            quantity_change=-2,
            reference_type=REFERENCE_ORDER,
            reference_id=77,
        )

        by_vendor = list_inventory_movements(vendor_id=other_vendor_branch.vendor_id)
        assert [m.product_id for m in by_vendor["items"]] == [theirs.id]

        by_branch = list_inventory_movements(branch_id=ours.branch_id)
        assert {m.variant_id for m in by_branch["items"]} == {ours.id}
        assert by_branch["pagination"]["total_count"] == 2

        by_reference = list_inventory_movements(reference_type=REFERENCE_ORDER, reference_id=77)
        assert len(by_reference["items"]) == 1
        assert by_reference["items"][0].quantity_change == -2
        assert list_inventory_movements(reference_type=REFERENCE_ORDER, reference_id=78)["items"] == []

    def test_unknown_movement_type_rejected(self, db_session):
        with pytest.raises(ValidationError):
            list_inventory_movements(movement_type="LOST")

    def test_verify_detects_drift(self, db_session, make_variant):
        variant = make_variant(stock=10)
        # Out-of-band write that bypasses the ledger
        db.session.execute(
            ProductVariant.__table__.update().where(ProductVariant.id == variant.id).values(quantity=9)
        )
        db.session.commit()

        report = verify_ledger(variant.product_id, variant.id)
        assert not report["ok"]
        assert report["problems"][0]["problem"] == "live_mismatch"
