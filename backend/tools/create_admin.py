import argparse

from loguru import logger

from refledger.core.logging import setup_logging
from refledger.core.security import create_admin_access_token
from refledger.db.session import SessionLocal
from refledger.services.admin_service import (
    ROLE_SUPER_ADMIN,
    create_admin,
    get_admin_by_telegram_id,
)
from refledger.services.errors import LedgerError


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Create the first super admin, or issue a dashboard token for an existing admin"
    )
    parser.add_argument("--telegram-id", type=int, required=True)
    parser.add_argument("--role", default=ROLE_SUPER_ADMIN)
    args = parser.parse_args()

    setup_logging()
    with SessionLocal() as db:
        admin = get_admin_by_telegram_id(db, args.telegram_id)
        if admin is None:
            try:
                admin = create_admin(db, args.telegram_id, args.role)
            except LedgerError as exc:
                logger.error("Cannot create admin: {}", exc.message)
                raise SystemExit(1) from exc
            logger.success("Admin {} created with role {}", admin.id, admin.role)
        else:
            logger.info("Admin {} already exists with role {}", admin.id, admin.role)

        print(f"admin_id={admin.id}")
        print(f"role={admin.role}")
        print(f"token={create_admin_access_token(admin.id, role=admin.role)}")


if __name__ == "__main__":
    main()
