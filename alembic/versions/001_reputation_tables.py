"""Accounts, content counters, XP ledger, badges and bounties.

Revision ID: 001_reputation_tables
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_reputation_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Accounts ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS accounts (
            id SERIAL PRIMARY KEY,
            username VARCHAR(64) UNIQUE NOT NULL,
            email VARCHAR(320) UNIQUE,
            avatar TEXT,
            role VARCHAR(16) NOT NULL DEFAULT 'user',
            is_banned BOOLEAN NOT NULL DEFAULT false,
            xp INTEGER NOT NULL DEFAULT 0 CHECK (xp >= 0),
            level INTEGER NOT NULL DEFAULT 1 CHECK (level >= 1),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_accounts_xp
        ON accounts(xp DESC)
    """)

    # --- Content counted by badge rules ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS materials (
            id SERIAL PRIMARY KEY,
            account_id INTEGER NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            title VARCHAR(256) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_materials_account_id ON materials(account_id)")
    op.execute("""
        CREATE TABLE IF NOT EXISTS comments (
            id SERIAL PRIMARY KEY,
            account_id INTEGER NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            material_id INTEGER NOT NULL REFERENCES materials(id) ON DELETE CASCADE,
            content TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_comments_account_id ON comments(account_id)")
    op.execute("""
        CREATE TABLE IF NOT EXISTS favorites (
            id SERIAL PRIMARY KEY,
            account_id INTEGER NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            material_id INTEGER NOT NULL REFERENCES materials(id) ON DELETE CASCADE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT favorites_account_id_material_id_key UNIQUE (account_id, material_id)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_favorites_material_id ON favorites(material_id)")

    # --- XP Ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS xp_ledger (
            id SERIAL PRIMARY KEY,
            account_id INTEGER NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            amount INTEGER NOT NULL,
            source VARCHAR(32) NOT NULL,
            source_id VARCHAR(128),
            description VARCHAR(256),
            idempotency_key VARCHAR(256) UNIQUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_xp_ledger_account_created
        ON xp_ledger(account_id, created_at)
    """)

    # --- Badges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badge_definitions (
            id SERIAL PRIMARY KEY,
            code VARCHAR(64) UNIQUE NOT NULL,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL,
            icon VARCHAR(32) NOT NULL,
            sort_order INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS account_badges (
            id SERIAL PRIMARY KEY,
            account_id INTEGER NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            badge_id INTEGER NOT NULL REFERENCES badge_definitions(id) ON DELETE CASCADE,
            earned_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT account_badges_account_id_badge_id_key UNIQUE (account_id, badge_id)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_account_badges_account_id ON account_badges(account_id)")

    # --- Bounties ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS bounties (
            id SERIAL PRIMARY KEY,
            account_id INTEGER NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            title VARCHAR(256) NOT NULL,
            description TEXT NOT NULL,
            reward_xp INTEGER NOT NULL CHECK (reward_xp > 0),
            status VARCHAR(16) NOT NULL DEFAULT 'open',
            solved_by INTEGER REFERENCES accounts(id) ON DELETE SET NULL,
            tags JSON,
            images JSON,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_bounties_status_created
        ON bounties(status, created_at)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS bounty_answers (
            id SERIAL PRIMARY KEY,
            bounty_id INTEGER NOT NULL REFERENCES bounties(id) ON DELETE CASCADE,
            account_id INTEGER NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            content TEXT NOT NULL,
            images JSON,
            is_accepted BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_bounty_answers_bounty_id ON bounty_answers(bounty_id)")
    op.execute("""
        CREATE TABLE IF NOT EXISTS bounty_answer_comments (
            id SERIAL PRIMARY KEY,
            answer_id INTEGER NOT NULL REFERENCES bounty_answers(id) ON DELETE CASCADE,
            account_id INTEGER NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            content TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_bounty_answer_comments_answer_id
        ON bounty_answer_comments(answer_id)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS bounty_answer_comments CASCADE")
    op.execute("DROP TABLE IF EXISTS bounty_answers CASCADE")
    op.execute("DROP TABLE IF EXISTS bounties CASCADE")
    op.execute("DROP TABLE IF EXISTS account_badges CASCADE")
    op.execute("DROP TABLE IF EXISTS badge_definitions CASCADE")
    op.execute("DROP TABLE IF EXISTS xp_ledger CASCADE")
    op.execute("DROP TABLE IF EXISTS favorites CASCADE")
    op.execute("DROP TABLE IF EXISTS comments CASCADE")
    op.execute("DROP TABLE IF EXISTS materials CASCADE")
    op.execute("DROP TABLE IF EXISTS accounts CASCADE")
