"""One-shot schema bootstrap.

Creates every table of the ledger plus the indexes that the declarative
models cannot express, then exits. The running service only calls this
when ``auto_create_schema`` is set; otherwise it is invoked by deploy tooling
(``python -m refledger.db.bootstrap``) and by the test suite.
"""

from loguru import logger
from sqlalchemy import text
from sqlalchemy.engine import Engine

from refledger.db import models  # noqa: F401  registers tables on Base.metadata
from refledger.db.base import Base

EXTRA_INDEXES = (
    "CREATE INDEX IF NOT EXISTS ix_admin_setting_audits_updated_at_desc "
    "ON admin_setting_audits(updated_at DESC)",
    "CREATE INDEX IF NOT EXISTS ix_admin_setting_audits_namespace_updated_at "
    "ON admin_setting_audits(namespace, updated_at DESC)",
    "CREATE INDEX IF NOT EXISTS ix_reward_ledger_entries_user_created_at "
    "ON reward_ledger_entries(user_id, created_at DESC)",
)


def bootstrap_schema(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine, checkfirst=True)
    with engine.begin() as connection:
        for statement in EXTRA_INDEXES:
            connection.execute(text(statement))


def main() -> None:
    from refledger.core.logging import setup_logging
    from refledger.db.session import engine

    setup_logging()
    logger.info("Applying schema to {}", engine.url.render_as_string(hide_password=True))
    bootstrap_schema(engine)
    logger.success("Schema bootstrap complete")


if __name__ == "__main__":
    main()
