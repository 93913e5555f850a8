"""
Add a database-enforced no-overlap guarantee for staff appointments (PostgreSQL)

Constraint:
- appointments_no_staff_overlap EXCLUDE USING gist
  (staff_id WITH =, tstzrange(start_time, end_time, '[)') WITH &&)
  WHERE status IN ('pending', 'scheduled', 'confirmed', 'in_progress')

Also enables row-level security on tenant tables keyed on
app.current_organization_id.
"""

# Ensure this script can be run directly from the repo root
import sys
from pathlib import Path

CURRENT_DIR = Path(__file__).resolve().parent
ROOT_DIR = CURRENT_DIR.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from sqlalchemy import text  # noqa: E402

from practicehub.database import engine  # noqa: E402

TENANT_TABLES = [
    "appointments",
    "memberships",
    "reward_ledger_entries",
    "transactions",
]


def upgrade():
    if engine.dialect.name != "postgresql":
        print("⏭️  Skipping: exclusion constraints require PostgreSQL")
        return

    with engine.begin() as conn:
        conn.execute(text("CREATE EXTENSION IF NOT EXISTS btree_gist;"))

        exists = conn.execute(
            text(
                """
                SELECT 1 FROM pg_constraint
                WHERE conname = 'appointments_no_staff_overlap'
                """
            )
        ).first()
        if exists:
            print("ℹ️  appointments_no_staff_overlap already exists")
        else:
            conn.execute(
                text(
                    """
                    ALTER TABLE appointments
                    ADD CONSTRAINT appointments_no_staff_overlap
                    EXCLUDE USING gist (
                        staff_id WITH =,
                        tstzrange(start_time, end_time, '[)') WITH &&
                    )
                    WHERE (status IN ('pending', 'scheduled', 'confirmed', 'in_progress'));
                    """
                )
            )
            print("✅ Added appointments_no_staff_overlap")

        for table in TENANT_TABLES:
            conn.execute(text(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY;"))
            conn.execute(text(f"DROP POLICY IF EXISTS {table}_tenant_isolation ON {table};"))
            conn.execute(
                text(
                    f"""
                    CREATE POLICY {table}_tenant_isolation ON {table}
                    USING (
                        current_setting('app.current_organization_id', true) IS NULL
                        OR current_setting('app.current_organization_id', true) = ''
                        OR organization_id = current_setting('app.current_organization_id', true)::int
                    );
                    """
                )
            )
            print(f"✅ Row-level security enabled on {table}")


def downgrade():
    if engine.dialect.name != "postgresql":
        return

    with engine.begin() as conn:
        conn.execute(
            text("ALTER TABLE appointments DROP CONSTRAINT IF EXISTS appointments_no_staff_overlap;")
        )
        for table in TENANT_TABLES:
            conn.execute(text(f"DROP POLICY IF EXISTS {table}_tenant_isolation ON {table};"))
            conn.execute(text(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY;"))
        print("✅ Removed overlap constraint and tenant policies")


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "downgrade":
        downgrade()
    else:
        upgrade()
