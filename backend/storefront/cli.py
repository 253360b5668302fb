# Overview: Flask CLI command groups for bootstrap, ledger inspection, and maintenance.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Demo data:
# - python -m flask store seed-demo
#   Idempotent: vendor, branch, one user per role, an address and a few stocked products.
#
# Inventory ledger:
# - python -m flask inventory movements --product-id 1 [--variant-id 2] [--type REMOVED] [--limit 20]
#   List recent movements, newest first.
# - python -m flask inventory verify --product-id 1 [--variant-id 2]
#   Check before/after arithmetic, chaining, and live quantity against the ledger.
# - python -m flask inventory adjust --product-id 1 [--variant-id 2] --change -3 --notes "Damaged"
#   Manual correction through the ledger (use --target for an absolute count).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Address, Branch, Product, ProductVariant, User, Vendor
from .models.auth import ROLE_RIDER, ROLE_SUPER_ADMIN, ROLE_USER, ROLE_VENDOR_ADMIN
from .services import inventory_service
from .services.concurrency import run_in_transaction


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask store seed-demo' to add demo data.")


@click.group('store')
def store_group():
    """Demo data commands."""


DEMO_PRODUCTS = [
    # (title, price cents, initial stock, variants[(name, price cents, stock)])
    ("Basmati Rice", 0, 0, [("1 kg", 12000, 40), ("5 kg", 55000, 12)]),
    ("Sunflower Oil 1L", 18500, 25, []),
    ("Sea Salt 500g", 2500, 3, []),
]


@store_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Create demo vendor, branch, users, address and stocked catalog (idempotent)."""
    vendor = Vendor.query.filter_by(code="DEMO").first()
    if vendor is not None:
        click.echo(f"PASS Demo data already present (vendor ID: {vendor.id})")
        return

    def _op():
        vendor = Vendor(name="Demo Grocer", code="DEMO")
        db.session.add(vendor)
        db.session.flush()

        branch = Branch(vendor_id=vendor.id, name="Main Branch", code="MAIN")
        db.session.add(branch)
        db.session.flush()

        users = {
            ROLE_USER: User(name="Demo Customer", email="customer@storefront.local", role=ROLE_USER),
            ROLE_VENDOR_ADMIN: User(
                name="Demo Vendor Admin",
                email="vendor@storefront.local",
                role=ROLE_VENDOR_ADMIN,
                vendor_id=vendor.id,
                branch_id=branch.id,
            ),
            ROLE_RIDER: User(
                name="Demo Rider",
                email="rider@storefront.local",
                role=ROLE_RIDER,
                vendor_id=vendor.id,
                branch_id=branch.id,
            ),
            ROLE_SUPER_ADMIN: User(name="Demo Super Admin", email="admin@storefront.local", role=ROLE_SUPER_ADMIN),
        }
        db.session.add_all(users.values())
        db.session.flush()

        db.session.add(Address(
            name="Demo Customer",
            mobile_number="0000000000",
            house_no="12",
            street_details="Market Road",
            city="Springfield",
            state="State",
            postal_code="00000",
            created_by=users[ROLE_USER].id,
        ))

        admin_id = users[ROLE_SUPER_ADMIN].id
        for title, price, stock, variants in DEMO_PRODUCTS:
            product = Product(
                vendor_id=vendor.id,
                branch_id=branch.id,
                title=title,
                selling_price_cents=price,
                quantity=0,
                created_by=admin_id,
            )
            db.session.add(product)
            db.session.flush()

            if stock:
                inventory_service.record_movement(
                    product_id=product.id,
                    movement_type=inventory_service.MOVEMENT_ADDED,
                    quantity_change=stock,
                    reference_type=inventory_service.REFERENCE_PRODUCT,
                    reference_id=product.id,
                    user_id=admin_id,
                    notes="Opening stock",
                )

            for name, v_price, v_stock in variants:
                variant = ProductVariant(
                    product_id=product.id,
                    vendor_id=vendor.id,
                    branch_id=branch.id,
                    variant_name=name,
                    selling_price_cents=v_price,
                    quantity=0,
                    created_by=admin_id,
                )
                db.session.add(variant)
                db.session.flush()
                inventory_service.record_movement(
                    product_id=product.id,
                    variant_id=variant.id,
                    movement_type=inventory_service.MOVEMENT_ADDED,
                    quantity_change=v_stock,
                    reference_type=inventory_service.REFERENCE_PRODUCT,
                    reference_id=product.id,
                    user_id=admin_id,
                    notes="Opening stock",
                )

        return vendor, branch, users

    vendor, branch, users = run_in_transaction(_op)

    click.echo(f"PASS Created vendor: {vendor.name} (ID: {vendor.id})")
    click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id})")
    click.echo("\nUSERS")
    for role, user in users.items():
        click.echo(f"  {role:<13} id={user.id} email={user.email}")
    click.echo("\nProducts:")
    for p in Product.query.filter_by(vendor_id=vendor.id).order_by(Product.id).all():
        click.echo(f"  [{p.id}] {p.title} qty={p.quantity} status={p.product_status}")
        for v in p.variants:
            click.echo(f"      variant [{v.id}] {v.variant_name} qty={v.quantity} status={v.product_status}")


@click.group('inventory')
def inventory_group():
    """Inventory ledger inspection commands."""


@inventory_group.command('movements')
@click.option('--product-id', type=int, default=None, help='Filter by product')
@click.option('--variant-id', type=int, default=None, help='Filter by variant')
@click.option('--type', 'movement_type', default=None, help='ADDED, REMOVED, ADJUSTED or REVERTED')
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def list_movements(product_id, variant_id, movement_type, limit):
    """List recent inventory movements, newest first."""
    result = inventory_service.list_inventory_movements(
        product_id=product_id,
        variant_id=variant_id,
        movement_type=movement_type.upper() if movement_type else None,
        page_size=limit,
    )
    rows = result["items"]
    if not rows:
        click.echo("No movements found.")
        return

    click.echo(f"{'ID':<6} {'TYPE':<9} {'PRODUCT':<8} {'VARIANT':<8} {'BEFORE':>7} {'CHANGE':>7} {'AFTER':>7}  REF")
    for m in rows:
        ref = f"{m.reference_type}:{m.reference_id}" if m.reference_type else "-"
        click.echo(
            f"{m.id:<6} {m.movement_type:<9} {m.product_id:<8} {str(m.variant_id or '-'):<8} "
            f"{m.quantity_before:>7} {m.quantity_change:>+7} {m.quantity_after:>7}  {ref}"
        )
    click.echo(f"\n{len(rows)} of {result['pagination']['total_count']} movements")


@inventory_group.command('verify')
@click.option('--product-id', type=int, required=True)
@click.option('--variant-id', type=int, default=None)
@with_appcontext
def verify_ledger(product_id, variant_id):
    """Audit one stock carrier's ledger against its live quantity."""
    report = inventory_service.verify_ledger(product_id, variant_id)
    click.echo(
        f"Movements: {report['movement_count']}  Live quantity: {report['live_quantity']}"
    )
    if report["ok"]:
        click.echo("PASS Ledger consistent")
        return
    for problem in report["problems"]:
        click.echo(f"FAIL movement {problem['movement_id']}: {problem['problem']}")
    raise SystemExit(1)


@inventory_group.command('adjust')
@click.option('--product-id', type=int, required=True)
@click.option('--variant-id', type=int, default=None)
@click.option('--change', 'quantity_change', type=int, default=None, help='Signed quantity delta')
@click.option('--target', 'target_quantity', type=int, default=None, help='Absolute quantity to set')
@click.option('--notes', default=None)
@click.option('--user-id', type=int, default=None, help='Acting user recorded on the movement')
@with_appcontext
def adjust_stock(product_id, variant_id, quantity_change, target_quantity, notes, user_id):
    """Manual stock correction through the ledger."""
    if (quantity_change is None) == (target_quantity is None):
        raise click.UsageError("Provide exactly one of --change or --target")

    movement = inventory_service.adjust_inventory(
        product_id=product_id,
        variant_id=variant_id,
        quantity_change=quantity_change,
        target_quantity=target_quantity,
        notes=notes,
        user_id=user_id,
    )
    click.echo(
        f"PASS {movement.movement_type} {movement.quantity_before}{movement.quantity_change:+d}"
        f"={movement.quantity_after} (movement ID: {movement.id})"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(store_group)
    app.cli.add_command(inventory_group)
