from alembic import op
import sqlalchemy as sa

revision = "20261016_01_baseline_derived_state"
down_revision = None
branch_labels = None
depends_on = None

# Fixed-point columns hold decimal strings (see models.base.FixedPoint).
FIXED = sa.String(80)


def upgrade() -> None:
    op.create_table(
        "markets",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("engine", sa.String(42), nullable=False),
        sa.Column("market", sa.String(42), nullable=False),
        sa.Column("collateral_token", sa.String(42), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_block", sa.BigInteger(), nullable=False),
    )
    op.create_index("ix_markets_engine", "markets", ["engine"])

    op.create_table(
        "price_points",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("engine", sa.String(42), nullable=False),
        sa.Column("block_number", sa.BigInteger(), nullable=False),
        sa.Column("log_index", sa.Integer(), nullable=False),
        sa.Column("price", FIXED, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_price_points_engine", "price_points", ["engine"])
    op.create_index("ix_price_points_block_number", "price_points", ["block_number"])

    op.create_table(
        "trades",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("engine", sa.String(42), nullable=False),
        sa.Column("user", sa.String(42), nullable=False),
        sa.Column("position_id", FIXED, nullable=False),
        sa.Column("event_type", sa.Enum("open", "close", "liquidate", name="tradetype"), nullable=False),
        sa.Column("price", FIXED, nullable=False),
        sa.Column("base_size", FIXED, nullable=False),
        sa.Column("margin", FIXED, nullable=False),
        sa.Column("notional", FIXED, nullable=False),
        sa.Column("pnl", FIXED, nullable=True),
        sa.Column("is_long", sa.Boolean(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("block_number", sa.BigInteger(), nullable=False),
        sa.Column("log_index", sa.Integer(), nullable=False),
        sa.Column("tx_hash", sa.String(66), nullable=False),
        sa.Column("leverage", FIXED, nullable=True),
        sa.Column("fee", FIXED, nullable=True),
        sa.Column("liquidator", sa.String(42), nullable=True),
        sa.Column("liquidator_reward", FIXED, nullable=True),
    )
    op.create_index("ix_trades_engine", "trades", ["engine"])
    op.create_index("ix_trades_user", "trades", ["user"])
    op.create_index("ix_trades_position_id", "trades", ["position_id"])
    op.create_index("ix_trades_block_number", "trades", ["block_number"])

    op.create_table(
        "positions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("position_id", FIXED, nullable=False),
        sa.Column("engine", sa.String(42), nullable=False),
        sa.Column("user", sa.String(42), nullable=False),
        sa.Column("is_long", sa.Boolean(), nullable=False),
        sa.Column("base_size", FIXED, nullable=False),
        sa.Column("entry_price", FIXED, nullable=False),
        sa.Column("entry_notional", FIXED, nullable=False),
        sa.Column("margin", FIXED, nullable=False),
        sa.Column("leverage", FIXED, nullable=False),
        sa.Column("carry_snapshot", FIXED, nullable=False),
        sa.Column("open_block", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.Enum("OPEN", "CLOSED", "LIQUIDATED", name="positionstatus"), nullable=False),
        sa.Column("realized_pnl", FIXED, nullable=False),
        sa.Column("close_price", FIXED, nullable=True),
        sa.Column("closed_block", sa.BigInteger(), nullable=True),
        sa.UniqueConstraint("engine", "position_id", name="uq_positions_engine_position"),
    )
    op.create_index("ix_positions_engine", "positions", ["engine"])
    op.create_index("ix_positions_user", "positions", ["user"])
    op.create_index("ix_positions_status", "positions", ["status"])

    op.create_table(
        "user_holdings",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user", sa.String(42), nullable=False),
        sa.Column("engine", sa.String(42), nullable=False),
        sa.Column("open_position_count", sa.Integer(), nullable=False),
        sa.Column("total_trades", sa.Integer(), nullable=False),
        sa.Column("total_volume", FIXED, nullable=False),
        sa.Column("realized_pnl", FIXED, nullable=False),
        sa.Column("last_trade_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_user_holdings_user", "user_holdings", ["user"])
    op.create_index("ix_user_holdings_engine", "user_holdings", ["engine"])

    op.create_table(
        "progress_cursors",
        sa.Column("stream", sa.String(), primary_key=True),
        sa.Column("block_number", sa.BigInteger(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("progress_cursors")
    op.drop_table("user_holdings")
    op.drop_table("positions")
    op.drop_table("trades")
    op.drop_table("price_points")
    op.drop_table("markets")
    sa.Enum(name="positionstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="tradetype").drop(op.get_bind(), checkfirst=True)
