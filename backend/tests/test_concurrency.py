# Overview: Threaded concurrency tests for the stock pool and sale finalization.

"""
Concurrency tests against a real SQLite file (an in-memory database shares
one connection across threads and would hide every race).

Run with:
    python -m pytest backend/tests/test_concurrency.py
"""
import os
import tempfile
import threading
import unittest

from stockpool import create_app
from stockpool.errors import InsufficientStock
from stockpool.extensions import db
from stockpool.models import Branch, Company, Customer, Product, ProductUnit, ProductVariant, Sale
from stockpool.models.inventory import TRACK_QUANTITY, TRACK_UNITS, TRACK_VARIANTS, UNIT_SOLD
from stockpool.services.cart_composer import CartComposer
from stockpool.services.customer_resolver import CustomerCandidate, resolve_or_create
from stockpool.services.sale_finalizer import finalize_sale
from stockpool.services.stock_model import StockModel


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            company = Company(name="Concurrency Co", code="CONC")
            db.session.add(company)
            db.session.flush()
            self.company_id = company.id

            branch = Branch(company_id=company.id, name="Concurrency Branch")
            customer = Customer(company_id=company.id, name="Walk-in", email="walk-in@cliente.com", name_key="walk-in")
            db.session.add_all([branch, customer])
            db.session.commit()
            self.branch_id = branch.id
            self.customer_id = customer.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _add(self, *objects):
        with self.app.app_context():
            db.session.add_all(objects)
            db.session.commit()
            return [obj.id for obj in objects]

    def _run_threads(self, target, args_list):
        results = []
        lock = threading.Lock()

        def worker(*args):
            with self.app.app_context():
                try:
                    outcome = target(*args)
                    with lock:
                        results.append(outcome)
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

    def _sell(self, build_cart, barrier=None):
        stock = StockModel(self.company_id)
        composer = CartComposer(stock)
        build_cart(composer)
        if barrier is not None:
            barrier.wait(timeout=10)
        sale = finalize_sale(self.company_id, composer.cart, self.customer_id, self.branch_id, "CASH")
        return sale.invoice_number

    def test_concurrent_variant_sales_never_oversell(self):
        """Stock 3, two sales of 2 composed against the same snapshot: one wins."""
        with self.app.app_context():
            product = Product(company_id=self.company_id, name="Forro", tracking_mode=TRACK_VARIANTS)
            db.session.add(product)
            db.session.flush()
            variant = ProductVariant(product_id=product.id, name="Negro", stock=3)
            db.session.add(variant)
            db.session.commit()
            product_id, variant_id = product.id, variant.id

        barrier = threading.Barrier(2)
        results = self._run_threads(
            lambda: self._sell(lambda c: c.add_variant_line(product_id, variant_id, 2), barrier),
            [(), ()],
        )

        successes = [r for r in results if isinstance(r, str)]
        failures = [r for r in results if isinstance(r, Exception)]
        self.assertEqual(len(successes), 1, results)
        self.assertEqual(len(failures), 1)
        self.assertIsInstance(failures[0], InsufficientStock)

        with self.app.app_context():
            self.assertEqual(db.session.get(ProductVariant, variant_id).stock, 1)
            self.assertEqual(db.session.query(Sale).count(), 1)

    def test_successes_bounded_by_pool_size(self):
        """Ten single-item sales against a pool of four: exactly four commit."""
        (product_id,) = self._add(Product(
            company_id=self.company_id, name="Cable", tracking_mode=TRACK_QUANTITY, quantity=4
        ))

        results = self._run_threads(
            lambda: self._sell(lambda c: c.add_quantity_line(product_id, 1)),
            [()] * 10,
        )

        successes = [r for r in results if isinstance(r, str)]
        self.assertEqual(len(successes), 4, results)
        self.assertTrue(all(isinstance(r, InsufficientStock) for r in results if not isinstance(r, str)))
        with self.app.app_context():
            self.assertEqual(db.session.get(Product, product_id).quantity, 0)

    def test_same_unit_sold_once(self):
        with self.app.app_context():
            product = Product(company_id=self.company_id, name="Teléfono", tracking_mode=TRACK_UNITS)
            db.session.add(product)
            db.session.flush()
            unit = ProductUnit(product_id=product.id, imei="490154203237518")
            db.session.add(unit)
            db.session.commit()
            product_id, unit_id = product.id, unit.id

        barrier = threading.Barrier(4)
        results = self._run_threads(
            lambda: self._sell(lambda c: c.add_unit_line(product_id, [unit_id]), barrier),
            [()] * 4,
        )

        self.assertEqual(len([r for r in results if isinstance(r, str)]), 1, results)
        with self.app.app_context():
            self.assertEqual(db.session.get(ProductUnit, unit_id).status, UNIT_SOLD)

    def test_overlapping_carts_do_not_deadlock(self):
        first_id, second_id = self._add(
            Product(company_id=self.company_id, name="A", tracking_mode=TRACK_QUANTITY, quantity=20),
            Product(company_id=self.company_id, name="B", tracking_mode=TRACK_QUANTITY, quantity=20),
        )

        def forward(c):
            c.add_quantity_line(first_id, 1)
            c.add_quantity_line(second_id, 1)

        def backward(c):
            c.add_quantity_line(second_id, 1)
            c.add_quantity_line(first_id, 1)

        results = self._run_threads(lambda build: self._sell(build), [(forward,), (backward,)] * 3)

        self.assertTrue(all(isinstance(r, str) for r in results), results)
        self.assertEqual(len(set(results)), 6)
        with self.app.app_context():
            self.assertEqual(db.session.get(Product, first_id).quantity, 14)
            self.assertEqual(db.session.get(Product, second_id).quantity, 14)

    def test_concurrent_resolve_creates_one_customer(self):
        candidate = CustomerCandidate(name="Cliente Nuevo", phone="311 222 3333")

        results = self._run_threads(lambda: resolve_or_create(self.company_id, candidate), [()] * 6)

        self.assertTrue(all(isinstance(r, int) for r in results), results)
        self.assertEqual(len(set(results)), 1)

    def test_concurrent_resolve_same_name_different_phones(self):
        candidates = [
            CustomerCandidate(name="Cliente Repetido", phone=f"311 000 000{i}")
            for i in range(6)
        ]

        results = self._run_threads(lambda c: resolve_or_create(self.company_id, c), [(c,) for c in candidates])

        self.assertTrue(all(isinstance(r, int) for r in results), results)
        self.assertEqual(len(set(results)), 1)
        with self.app.app_context():
            self.assertEqual(
                db.session.query(Customer).filter_by(name_key="cliente repetido").count(), 1
            )


if __name__ == "__main__":
    unittest.main()
