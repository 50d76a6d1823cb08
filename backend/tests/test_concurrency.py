# Overview: Threaded concurrency tests against a file-backed SQLite database.

"""
Concurrency tests for the billing ledger.

An in-memory database shares a single connection, so these tests use a
temporary SQLite file and real threads, each with its own app context and
session.
"""
import os
import tempfile
import threading
import unittest
from datetime import date
from decimal import Decimal

from sahacrm import create_app
from sahacrm.extensions import db
from sahacrm.models import AccountMovement, Customer, DeliveryNote, Invoice, Product
from sahacrm.services import delivery_service, document_service, invoice_service, payment_service
from sahacrm.services.concurrency import run_with_retry
from sahacrm.services.document_service import SEQUENCE_INVOICE
from sahacrm.services.payment_service import METHOD_CASH, OverpaymentError
from sahacrm.validation import ConflictError


THREADS = 8


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30}},
            "MAIL_ENABLED": False,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            customer = Customer(company_name="Eşzamanlı Ticaret", email="test@example.com")
            product = Product(name="Concurrent Product", unit="adet", price_cents=500)
            db.session.add_all([customer, product])
            db.session.commit()
            self.customer_id = customer.id
            self.product_id = product.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_threads(self, target, args_list):
        results = []
        lock = threading.Lock()

        def worker(*args):
            with self.app.app_context():
                try:
                    value = target(*args)
                    with lock:
                        results.append(value)
                except Exception as exc:
                    with lock:
                        results.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker, args=args) for args in args_list]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def _delivered_note(self, quantity="1", unit_price_cents=500):
        note = delivery_service.create_delivery_note(
            customer_id=self.customer_id,
            delivery_date=date(2026, 10, 1),
            items=[{"product_id": self.product_id, "quantity": Decimal(quantity), "unit_price_cents": unit_price_cents}],
        )
        delivery_service.sign_delivery_note(note.id, signature="sig", signer_name="Ayşe Kaya")
        return note.id

    def test_delivery_note_numbers_are_unique(self):
        def create():
            note = delivery_service.create_delivery_note(
                customer_id=self.customer_id,
                items=[{"product_id": self.product_id, "quantity": Decimal("1"), "unit_price_cents": 100}],
            )
            return note.document_number

        results = self._run_threads(create, [() for _ in range(THREADS)])

        errors = [r for r in results if isinstance(r, Exception)]
        self.assertFalse(errors)
        self.assertEqual(len(results), THREADS)
        self.assertEqual(len(set(results)), THREADS)

    def test_invoice_numbers_are_unique(self):
        def allocate():
            def _op():
                number = document_service.next_document_number(SEQUENCE_INVOICE, on_date=date(2026, 10, 19))
                db.session.commit()
                return number

            return run_with_retry(_op)

        results = self._run_threads(allocate, [() for _ in range(THREADS)])

        errors = [r for r in results if isinstance(r, Exception)]
        self.assertFalse(errors)
        self.assertEqual(len(set(results)), THREADS)
        self.assertTrue(all(r.startswith("FAT-261019-") for r in results))

        with self.app.app_context():
            self.assertEqual(document_service.peek_current_value(SEQUENCE_INVOICE), THREADS)

    def test_same_note_consolidated_at_most_once(self):
        with self.app.app_context():
            note_id = self._delivered_note()

        def consolidate():
            invoice = invoice_service.create_invoice_from_delivery_notes(
                customer_id=self.customer_id, delivery_note_ids=[note_id]
            )
            return invoice.id

        results = self._run_threads(consolidate, [() for _ in range(4)])

        created = [r for r in results if isinstance(r, int)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        self.assertEqual(len(created), 1, results)
        self.assertEqual(len(conflicts), 3, results)

        with self.app.app_context():
            self.assertEqual(db.session.query(Invoice).count(), 1)
            self.assertEqual(db.session.query(AccountMovement).count(), 1)
            self.assertEqual(db.session.get(DeliveryNote, note_id).invoice_id, created[0])

    def test_concurrent_payments_never_overpay(self):
        with self.app.app_context():
            # 200 x 5.00 = 1000.00
            note_id = self._delivered_note(quantity="200")
            invoice = invoice_service.create_invoice_from_delivery_notes(
                customer_id=self.customer_id, delivery_note_ids=[note_id]
            )
            invoice_id = invoice.id

        def pay():
            payment = payment_service.record_payment(
                customer_id=self.customer_id,
                invoice_id=invoice_id,
                amount_cents=30000,
                payment_method=METHOD_CASH,
            )
            return payment.id

        results = self._run_threads(pay, [() for _ in range(4)])

        accepted = [r for r in results if isinstance(r, int)]
        rejected = [r for r in results if isinstance(r, OverpaymentError)]
        self.assertEqual(len(accepted), 3, results)
        self.assertEqual(len(rejected), 1, results)

        with self.app.app_context():
            invoice = db.session.get(Invoice, invoice_id)
            self.assertEqual(invoice.paid_amount_cents, 90000)
            self.assertEqual(invoice.remaining_amount_cents, 10000)
            self.assertEqual(invoice.status, "partial")
            credits = db.session.query(AccountMovement).filter_by(movement_type="payment").count()
            self.assertEqual(credits, 3)


if __name__ == "__main__":
    unittest.main()
