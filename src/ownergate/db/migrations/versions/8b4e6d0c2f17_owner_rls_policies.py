"""row-level security on owned tables

Learn: The gateway binds the caller's id on its dedicated connection with
set_config('app.authenticated_user_id', ...). These policies only expose
rows whose user_id equals that setting, so storage enforces ownership
independently of the gateway. current_setting(..., true) returns NULL
(or '' after a clear) when nothing is bound, which matches no rows.

FORCE ROW LEVEL SECURITY applies the policies to the table owner too,
because the API connects as the role that owns the tables.

Revision ID: 8b4e6d0c2f17
Revises: 3f1c2a7d9b01
Create Date: 2026-10-18 09:31:05.402771
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '8b4e6d0c2f17'
down_revision: Union[str, None] = '3f1c2a7d9b01'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

OWNED_TABLES = ("user_profiles", "user_stats", "user_preferences")


def upgrade() -> None:
    # ─── Helper: the id bound by the gateway ─────────────
    op.execute("""
        CREATE OR REPLACE FUNCTION app_acting_as()
        RETURNS TEXT AS $$
            SELECT NULLIF(current_setting('app.authenticated_user_id', true), '');
        $$ LANGUAGE sql STABLE;
    """)

    for table in OWNED_TABLES:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY;")
        op.execute(f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY;")
        op.execute(f"""
            CREATE POLICY {table}_owner ON {table}
                USING (user_id = app_acting_as())
                WITH CHECK (user_id = app_acting_as());
        """)


def downgrade() -> None:
    for table in OWNED_TABLES:
        op.execute(f"DROP POLICY IF EXISTS {table}_owner ON {table};")
        op.execute(f"ALTER TABLE {table} NO FORCE ROW LEVEL SECURITY;")
        op.execute(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY;")
    op.execute("DROP FUNCTION IF EXISTS app_acting_as;")
