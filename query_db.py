from sqlalchemy import select

from healthpass.core.database import SessionLocal
from healthpass.models.passport import health_passports
from healthpass.services.passports import is_expired, record_from_row


def main():
    with SessionLocal() as db:
        rows = db.execute(
            select(health_passports).order_by(health_passports.c.id.asc()).limit(10)
        ).all()

    if not rows:
        print("(no health passports)")
        return

    print(f"Previewing {len(rows)} health passport(s):\n")
    for row in rows:
        record = record_from_row(row)
        flag = "EXPIRED" if is_expired(record) else row.status
        print(f" - #{row.id} {row.passport_number} {row.holder_name} ({row.blood_type}) [{flag}]")
        print(f"   user: {row.user_id}  expires: {record.expiry or '-'}")


if __name__ == '__main__':
    main()
