from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from pharmpos.config import settings

connect_args = {}
engine_kwargs = {}
if settings.DATABASE_URL.startswith("sqlite"):
    connect_args["check_same_thread"] = False
else:
    engine_kwargs.update(
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_pre_ping=True,
    )

engine = create_engine(settings.DATABASE_URL, connect_args=connect_args, **engine_kwargs)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


if engine.dialect.name == "sqlite":
    # pysqlite: enforce foreign keys and let SQLAlchemy emit BEGIN itself so SAVEPOINT works.

    @event.listens_for(engine, "connect")
    def _sqlite_on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _sqlite_on_begin(conn):
        conn.exec_driver_sql("BEGIN")


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _migrate_add_columns():
    """Add columns introduced after the first release to existing tables."""
    inspector = inspect(engine)
    tables = inspector.get_table_names()

    migrations = {
        "inventory": {
            "sku": "VARCHAR",
            "cost_price": "FLOAT DEFAULT 0.0",
            "wholesale_price": "FLOAT DEFAULT 0.0",
            "low_stock_threshold": "INTEGER DEFAULT 10",
            "batch_number": "VARCHAR",
            "expiry_date": "DATE",
        },
        "sales": {
            "manual_discount": "FLOAT DEFAULT 0.0",
            "tax_amount": "FLOAT DEFAULT 0.0",
            "sale_type": "VARCHAR DEFAULT 'retail'",
            "business_name": "VARCHAR",
            "business_address": "VARCHAR",
            "cashier_id": "VARCHAR",
            "cashier_name": "VARCHAR",
            "cashier_email": "VARCHAR",
        },
        "sales_items": {
            "is_wholesale": "BOOLEAN DEFAULT 0",
            "cost_price": "FLOAT DEFAULT 0.0",
        },
        "audit_logs": {
            "user_email": "VARCHAR",
            "user_role": "VARCHAR",
            "resource_type": "VARCHAR",
            "resource_id": "VARCHAR",
            "error_message": "TEXT",
            "user_agent": "TEXT",
        },
    }

    for table, new_cols in migrations.items():
        if table not in tables:
            continue
        existing = {col["name"] for col in inspector.get_columns(table)}
        with engine.begin() as conn:
            for col_name, col_type in new_cols.items():
                if col_name not in existing:
                    conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {col_name} {col_type}"))

    # Snapshot cost prices for sale lines written before cost_price existed
    if "sales_items" in tables and "inventory" in tables:
        with engine.begin() as conn:
            conn.execute(text(
                "UPDATE sales_items SET cost_price = "
                "(SELECT inventory.cost_price FROM inventory WHERE inventory.id = sales_items.inventory_id) "
                "WHERE cost_price IS NULL"
            ))


def init_db():
    # Import all models so Base.metadata knows about them
    import pharmpos.models.audit_log  # noqa: F401
    import pharmpos.models.inventory  # noqa: F401
    import pharmpos.models.refund  # noqa: F401
    import pharmpos.models.sale  # noqa: F401
    import pharmpos.models.user  # noqa: F401

    Base.metadata.create_all(bind=engine)
    _migrate_add_columns()
