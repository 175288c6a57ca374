import base64
import json
import os
import tempfile
import unittest
from datetime import datetime, timedelta
from unittest.mock import patch

import cv2
import numpy as np
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, insert, inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from healthpass.core import config
from healthpass.core.database import get_db
from healthpass.main import app
from healthpass.models.passport import health_passports
from healthpass.models.passport import metadata as core_metadata
from healthpass.services import passports
from healthpass.services.errors import PassportNotFound, PassportNumberExhausted
from healthpass.services.export import import_record
from healthpass.services.matrix import generate


def _basic_auth(username: str, password: str) -> dict:
    token = base64.b64encode(f"{username}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


ADMIN = _basic_auth(config.ADMIN_USERNAME, config.ADMIN_PASSWORD)


def _png_cells(png: bytes, size: int = 21) -> np.ndarray:
    """Decode an identity code PNG back into its dark-cell grid, indexed [y, x]."""
    img = cv2.imdecode(np.frombuffer(png, dtype=np.uint8), cv2.IMREAD_GRAYSCALE)
    box, border = config.CODE_BOX_SIZE, config.CODE_BORDER
    return img[border * box::box, border * box::box][:size, :size] == 0


class _Numbers:
    """Deterministic passport number source for tests."""

    def __init__(self, *numbers):
        self._numbers = list(numbers)

    def __call__(self):
        return self._numbers.pop(0)


class PassportServiceTests(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self._db_path = os.path.join(self._tmpdir.name, "test_health_passport.db")
        self._engine = create_engine(
            f"sqlite:///{self._db_path}",
            connect_args={"check_same_thread": False},
        )
        core_metadata.create_all(self._engine)
        self._SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self._engine)

    def tearDown(self):
        self._engine.dispose()
        self._tmpdir.cleanup()

    def test_create_db_script_creates_passport_table(self):
        import create_db

        engine = create_engine(f"sqlite:///{os.path.join(self._tmpdir.name, 'script.db')}")
        try:
            with patch.object(create_db, "engine", engine), patch.object(create_db, "configure_logging"), \
                    patch("builtins.print"):
                create_db.main()
            self.assertIn("health_passports", inspect(engine).get_table_names())
            columns = {c["name"] for c in inspect(engine).get_columns("health_passports")}
            self.assertIn("passport_number", columns)
            self.assertNotIn("code_png", columns)
        finally:
            engine.dispose()

    def test_create_sets_active_status_and_expiry(self):
        now = datetime(2025, 1, 1, 8, 0, 0)
        with self._SessionLocal() as db:
            row = passports.create_passport(
                db, 7, "Siti Aminah", "O+", now=now, number_factory=_Numbers("DC-00007")
            )
        self.assertEqual(row.passport_number, "DC-00007")
        self.assertEqual(row.status, "active")
        self.assertEqual(row.expiry_date, now + timedelta(hours=config.PASSPORT_TTL_HOURS))
        self.assertEqual(row.user_id, 7)

    def test_rendered_code_matches_record_matrix(self):
        with self._SessionLocal() as db:
            row = passports.create_passport(db, 1, "Budi", "B+", number_factory=_Numbers("DC-00001"))
        record = passports.record_from_row(row)
        np.testing.assert_array_equal(_png_cells(passports.render_code(record)), generate(record).to_array())

    def test_issue_renews_existing_passport_of_user(self):
        with self._SessionLocal() as db:
            first, created = passports.issue_passport(
                db, 4, "Rina", "AB-", now=datetime(2024, 1, 1), number_factory=_Numbers("DC-00004")
            )
            self.assertTrue(created)
            second, created = passports.issue_passport(
                db, 4, "Rina", "AB-", now=datetime(2025, 1, 1), number_factory=_Numbers("DC-00005")
            )
            self.assertFalse(created)
            self.assertEqual(len(passports.list_passports(db)), 1)
            self.assertEqual(passports.get_passport_by_user(db, 4).id, first.id)
        self.assertEqual(second.passport_number, "DC-00004")
        self.assertEqual(second.expiry_date, datetime(2025, 1, 1) + timedelta(hours=config.PASSPORT_TTL_HOURS))

    def test_second_insert_for_same_user_renews(self):
        with self._SessionLocal() as db:
            passports.create_passport(db, 4, "Rina", "AB-", number_factory=_Numbers("DC-00004"))
            row = passports.create_passport(db, 4, "Rina", "AB-", number_factory=_Numbers("DC-00005"))
            self.assertEqual(row.passport_number, "DC-00004")
            self.assertEqual(len(passports.list_passports(db)), 1)

    def test_duplicate_numbers_are_retried(self):
        with self._SessionLocal() as db:
            passports.create_passport(db, 1, "First", "A+", number_factory=_Numbers("DC-11111"))
            row = passports.create_passport(
                db, 2, "Second", "A-", number_factory=_Numbers("DC-11111", "DC-11111", "DC-22222")
            )
        self.assertEqual(row.passport_number, "DC-22222")

    def test_gives_up_after_five_collisions(self):
        with self._SessionLocal() as db:
            passports.create_passport(db, 1, "First", "A+", number_factory=_Numbers("DC-11111"))
            with self.assertRaises(PassportNumberExhausted):
                passports.create_passport(
                    db, 2, "Second", "A-", number_factory=_Numbers(*["DC-11111"] * 5)
                )
            self.assertEqual(len(passports.list_passports(db)), 1)

    def test_generated_numbers_have_expected_shape(self):
        for _ in range(20):
            number = passports.generate_passport_number()
            self.assertRegex(number, r"^DC-\d{5}$")

    def test_record_from_row(self):
        expiry = datetime(2025, 3, 4, 5, 6, 7)
        with self._SessionLocal() as db:
            db.execute(
                insert(health_passports).values(
                    user_id=3,
                    holder_name="Rina",
                    blood_type="AB-",
                    passport_number="DC-00003",
                    expiry_date=expiry,
                    status="inactive",
                )
            )
            db.commit()
            row = passports.get_passport_by_number(db, "DC-00003")

        record = passports.record_from_row(row, base_url="https://darah.example")
        self.assertEqual(record.identifier, "DC-00003")
        self.assertEqual(record.display_name, "Rina")
        self.assertEqual(record.category, "AB-")
        self.assertEqual(record.state, "inactive")
        self.assertEqual(record.owner_id, 3)
        self.assertEqual(record.expiry, "2025-03-04T05:06:07+00:00")
        self.assertEqual(record.reference_url, "https://darah.example/health-passport/DC-00003")

    def test_is_expired(self):
        record = passports.demo_record()
        self.assertFalse(passports.is_expired(record))
        dated = passports.build_record("DC-1", "A", "O+", "active", 1, datetime(2025, 1, 2))
        self.assertFalse(passports.is_expired(dated, now=datetime(2025, 1, 1)))
        self.assertTrue(passports.is_expired(dated, now=datetime(2025, 1, 3)))

    def test_renew_reactivates_and_extends(self):
        with self._SessionLocal() as db:
            row = passports.create_passport(
                db, 1, "Budi", "B+", now=datetime(2024, 1, 1), number_factory=_Numbers("DC-00001")
            )
            later = datetime(2025, 6, 1, 12, 0, 0)
            renewed = passports.renew_passport(db, row.id, now=later)
        self.assertEqual(renewed.status, "active")
        self.assertEqual(renewed.expiry_date, later + timedelta(hours=config.PASSPORT_TTL_HOURS))

    def test_missing_passports_raise(self):
        with self._SessionLocal() as db:
            with self.assertRaises(PassportNotFound):
                passports.get_passport(db, 99)
            with self.assertRaises(PassportNotFound):
                passports.get_passport_by_user(db, 99)
            with self.assertRaises(PassportNotFound):
                passports.renew_passport(db, 99)
            with self.assertRaises(PassportNotFound):
                passports.delete_passport(db, 99)


class PassportApiFlowTests(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self._db_path = os.path.join(self._tmpdir.name, "test_health_passport.db")
        self._engine = create_engine(
            f"sqlite:///{self._db_path}",
            connect_args={"check_same_thread": False},
        )
        core_metadata.create_all(self._engine)
        self._SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self._engine)

        def _override_get_db():
            db = self._SessionLocal()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = _override_get_db
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()
        self._engine.dispose()
        self._tmpdir.cleanup()

    def _issue(self, user_id=1, name="Test User", blood_type="A+", number="DC-00001"):
        with patch.object(passports, "generate_passport_number", _Numbers(number)):
            return self.client.post(
                "/admin/passports",
                data={"userId": str(user_id), "fullName": name, "bloodType": blood_type},
                headers=ADMIN,
            )

    def test_admin_requires_credentials(self):
        self.assertEqual(self.client.get("/admin/passports").status_code, 401)
        bad = _basic_auth(config.ADMIN_USERNAME, "wrong")
        self.assertEqual(self.client.get("/admin/passports", headers=bad).status_code, 401)
        garbage = {"Authorization": "Basic !!!not-base64"}
        self.assertEqual(self.client.get("/admin/passports", headers=garbage).status_code, 401)

    def test_issue_list_and_lookup(self):
        response = self._issue()
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["passport"]["passport_number"], "DC-00001")
        self.assertEqual(body["passport"]["status"], "active")

        listed = self.client.get("/admin/passports", headers=ADMIN).json()["passports"]
        self.assertEqual([p["passport_number"] for p in listed], ["DC-00001"])

        public = self.client.get("/health-passport/DC-00001")
        self.assertEqual(public.status_code, 200)
        passport = public.json()["passport"]
        self.assertEqual(passport["passport_id"], "DC-00001")
        self.assertEqual(passport["name"], "Test User")
        self.assertEqual(passport["user_id"], 1)
        self.assertEqual(passport["url"], f"{config.PUBLIC_BASE_URL}/health-passport/DC-00001")
        self.assertFalse(public.json()["expired"])

    def test_issue_rejects_blank_name(self):
        response = self._issue(name="   ")
        self.assertEqual(response.status_code, 422)
        with self._SessionLocal() as db:
            self.assertEqual(db.execute(select(health_passports)).all(), [])

    def test_matrix_endpoint_matches_generator(self):
        self._issue()
        body = self.client.get("/health-passport/DC-00001/matrix").json()
        with self._SessionLocal() as db:
            record = passports.record_from_row(passports.get_passport_by_number(db, "DC-00001"))
        self.assertEqual(body["size"], 21)
        self.assertEqual(body["rows"], generate(record).to_list())
        # Repeated calls are identical.
        self.assertEqual(self.client.get("/health-passport/DC-00001/matrix").json(), body)

    def test_code_png(self):
        self._issue()
        response = self.client.get("/health-passport/DC-00001/code.png")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["content-type"], "image/png")
        self.assertTrue(response.content.startswith(b"\x89PNG"))

    def test_code_png_follows_record_changes(self):
        self._issue()
        with self._SessionLocal() as db:
            db.execute(
                health_passports.update()
                .where(health_passports.c.passport_number == "DC-00001")
                .values(status="expired")
            )
            db.commit()
        rows = self.client.get("/health-passport/DC-00001/matrix").json()["rows"]
        png = self.client.get("/health-passport/DC-00001/code.png").content
        np.testing.assert_array_equal(_png_cells(png), np.array(rows, dtype=bool))

    def test_export_download_round_trips(self):
        self._issue()
        response = self.client.get("/health-passport/DC-00001/export")
        self.assertEqual(response.status_code, 200)
        self.assertIn(
            'filename="health-passport-DC-00001.json"', response.headers["content-disposition"]
        )
        record = import_record(response.text)
        self.assertEqual(record.identifier, "DC-00001")
        self.assertEqual(json.loads(response.text)["blood_type"], "A+")

    def test_share_endpoints(self):
        self._issue(name="Dewi", blood_type="O-")
        share = self.client.get("/health-passport/DC-00001/share").json()
        self.assertEqual(share["text"], "Health Passport: Dewi (O-)")
        self.assertTrue(share["url"].endswith("/health-passport/DC-00001"))
        png = self.client.get("/health-passport/DC-00001/share.png")
        self.assertEqual(png.headers["content-type"], "image/png")

    def test_demo_passport(self):
        body = self.client.get("/health-passport/demo").json()
        self.assertEqual(body["passport"]["passport_id"], "DEMO-12345")
        self.assertEqual(body["passport"]["status"], "demo")
        self.assertIsNone(body["passport"]["expiry"])
        self.assertFalse(body["expired"])
        matrix = self.client.get("/health-passport/demo/matrix").json()
        self.assertEqual(matrix["rows"], generate(passports.demo_record()).to_list())

    def test_unknown_passport_is_404(self):
        for path in ("", "/matrix", "/code.png", "/export", "/share", "/share.png"):
            with self.subTest(path=path):
                self.assertEqual(self.client.get(f"/health-passport/DC-99999{path}").status_code, 404)

    def test_renew_and_delete(self):
        passport_id = self._issue().json()["passport"]["id"]
        with self._SessionLocal() as db:
            db.execute(
                health_passports.update()
                .where(health_passports.c.id == passport_id)
                .values(status="expired", expiry_date=datetime(2020, 1, 1))
            )
            db.commit()
        self.assertTrue(self.client.get("/health-passport/DC-00001").json()["expired"])

        renewed = self.client.patch(f"/admin/passports/{passport_id}/renew", headers=ADMIN)
        self.assertEqual(renewed.status_code, 200)
        self.assertEqual(renewed.json()["passport"]["status"], "active")
        self.assertFalse(self.client.get("/health-passport/DC-00001").json()["expired"])

        deleted = self.client.delete(f"/admin/passports/{passport_id}", headers=ADMIN)
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(self.client.get("/health-passport/DC-00001").status_code, 404)
        self.assertEqual(
            self.client.delete(f"/admin/passports/{passport_id}", headers=ADMIN).status_code, 404
        )
        self.assertEqual(
            self.client.patch(f"/admin/passports/{passport_id}/renew", headers=ADMIN).status_code, 404
        )

    def test_reissue_for_same_user_renews(self):
        first = self._issue(user_id=1, number="DC-00001")
        self.assertEqual(first.status_code, 201)
        self.assertTrue(first.json()["created"])
        second = self._issue(user_id=1, number="DC-00002")
        self.assertEqual(second.status_code, 200)
        self.assertFalse(second.json()["created"])
        self.assertEqual(second.json()["passport"]["passport_number"], "DC-00001")
        listed = self.client.get("/admin/passports", headers=ADMIN).json()["passports"]
        self.assertEqual(len(listed), 1)

    def test_user_passport_falls_back_to_demo(self):
        body = self.client.get("/health-passport/user/1").json()
        self.assertTrue(body["demo"])
        self.assertEqual(body["passport"]["passport_id"], "DEMO-12345")

        self._issue(user_id=1, number="DC-00001")
        body = self.client.get("/health-passport/user/1").json()
        self.assertFalse(body["demo"])
        self.assertEqual(body["passport"]["passport_id"], "DC-00001")
        self.assertEqual(body["passport"]["user_id"], 1)

    def test_invalid_stored_passport_is_422(self):
        with self._SessionLocal() as db:
            db.execute(
                insert(health_passports).values(
                    user_id=9,
                    holder_name="",
                    blood_type="O+",
                    passport_number="DC-00009",
                    status="pending",
                )
            )
            db.commit()
        for path in ("", "/matrix", "/code.png", "/export"):
            with self.subTest(path=path):
                self.assertEqual(self.client.get(f"/health-passport/DC-00009{path}").status_code, 422)
        self.assertEqual(self.client.get("/health-passport/user/9").status_code, 422)

    def test_database_failures_roll_back_and_return_500(self):
        passport_id = self._issue().json()["passport"]["id"]
        requests = [
            ("get", "/admin/passports", {}),
            ("post", "/admin/passports", {"data": {"userId": "2", "fullName": "Dewi", "bloodType": "O-"}}),
            ("patch", f"/admin/passports/{passport_id}/renew", {}),
            ("delete", f"/admin/passports/{passport_id}", {}),
        ]
        for method, path, kwargs in requests:
            with self.subTest(method=method, path=path):
                with patch.object(Session, "execute", side_effect=SQLAlchemyError("disk I/O error")), \
                        patch.object(Session, "rollback") as rollback:
                    response = getattr(self.client, method)(path, headers=ADMIN, **kwargs)
                self.assertEqual(response.status_code, 500)
                rollback.assert_called()
        # Nothing was changed by the failed requests.
        listed = self.client.get("/admin/passports", headers=ADMIN).json()["passports"]
        self.assertEqual([p["id"] for p in listed], [passport_id])


if __name__ == "__main__":
    unittest.main()
