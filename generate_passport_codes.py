import os

from sqlalchemy import select

from healthpass.core.database import SessionLocal, engine
from healthpass.models.passport import create_tables, health_passports
from healthpass.services.matrix import generate
from healthpass.services.passports import create_passport, record_from_row
from healthpass.services.qr_generator import matrix_to_png, matrix_to_text


def generate_and_store_passports(
    holders: list = None,
    output_folder: str = "healthpass/static/codes",
    show_text: bool = False,
) -> None:
    """Issue a passport per (user_id, name, blood_type) holder and write its code PNG."""
    os.makedirs(output_folder, exist_ok=True)
    create_tables(engine)

    if holders is None:
        holders = [(i + 1, f"Donor {i + 1}", "O+") for i in range(5)]

    db = SessionLocal()

    try:
        for user_id, name, blood_type in holders:
            existing = db.execute(
                select(health_passports).where(health_passports.c.user_id == user_id)
            ).first()

            if existing:
                # Do not modify existing DB record
                row = existing
                print(f"• Skipped DB insert: user {user_id} already has {row.passport_number}")
            else:
                row = create_passport(db, user_id, name, blood_type)
                print(f"✓ Issued {row.passport_number} for '{name}'")

            matrix = generate(record_from_row(row))
            filepath = os.path.join(output_folder, f"{row.passport_number}.png")
            with open(filepath, "wb") as fh:
                fh.write(matrix_to_png(matrix))
            print(f"  → Saved PNG to: {filepath}")
            if show_text:
                print(matrix_to_text(matrix))

        print(f"\n✓ Successfully processed {len(holders)} health passports!")

    except Exception as e:
        db.rollback()
        print(f"✗ Error: {e}")
        raise
    finally:
        db.close()


if __name__ == '__main__':
    donor_list = [
        (1, "John Doe", "A+"),
        (2, "Jane Smith", "O-"),
        (3, "Bob Johnson", "B+"),
        (4, "Alice Brown", "AB+"),
        (5, "Charlie Wilson", "O+"),
    ]

    generate_and_store_passports(
        holders=donor_list,
        output_folder="healthpass/static/codes",
        show_text=True,
    )
