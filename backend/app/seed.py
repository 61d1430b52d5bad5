"""
Seed script for Paystream AI: loads employees from a CSV file.

Run: python -m app.seed [path/to/employees-import.csv]

Columns: name, email, wallet_address, salary_annual, status. Existing emails
are skipped, so the script can be run again safely.
"""
import csv
import logging
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from app.database import SessionLocal
from app.models.employee import EMPLOYEE_STATUSES, Employee
from app.services.ledger import is_address

logger = logging.getLogger(__name__)

DEFAULT_CSV = Path.cwd() / "employees-import.csv"


def read_employee_csv(path: Path) -> list[dict]:
    with open(path, newline="", encoding="utf-8") as f:
        return [{(k or "").strip(): (v or "").strip() for k, v in row.items()} for row in csv.DictReader(f)]


def _row_to_employee(row: dict) -> Employee:
    name = row.get("name")
    email = (row.get("email") or "").lower()
    if not name or not email:
        raise ValueError("name and email are required")

    wallet = row.get("wallet_address") or None
    if wallet and not is_address(wallet):
        raise ValueError(f"invalid wallet address {wallet}")

    salary = None
    if row.get("salary_annual"):
        try:
            salary = Decimal(row["salary_annual"])
        except InvalidOperation:
            raise ValueError(f"invalid salary {row['salary_annual']}")

    status = row.get("status") or "pending"
    if status not in EMPLOYEE_STATUSES:
        raise ValueError(f"unknown status {status}")

    return Employee(name=name, email=email, wallet_address=wallet, salary_usd=salary, status=status)


def seed_employees(db, rows: list[dict]) -> dict:
    """Insert new employees. Returns counts of created, skipped and failed rows."""
    created = skipped = failed = 0
    for row in rows:
        email = (row.get("email") or "").lower()
        if email and db.query(Employee.id).filter(Employee.email == email).first():
            logger.info("Employee %s already exists, skipping.", email)
            skipped += 1
            continue
        try:
            db.add(_row_to_employee(row))
            db.commit()
            created += 1
            logger.info("Added %s (%s)", row.get("name"), email)
        except (ValueError, SQLAlchemyError) as e:
            db.rollback()
            failed += 1
            logger.error("Could not add %s: %s", email or row, e)
    return {"created": created, "skipped": skipped, "failed": failed}


def run_seed(csv_path: Path = DEFAULT_CSV):
    db = SessionLocal()
    try:
        rows = read_employee_csv(csv_path)
        logger.info("Found %d employees in %s", len(rows), csv_path)
        counts = seed_employees(db, rows)
        logger.info("Seed complete: %s", counts)
    except Exception:
        logger.exception("Seed failed")
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_seed(Path(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_CSV)
