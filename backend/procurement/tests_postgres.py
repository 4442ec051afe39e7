import os
import threading
import unittest

from django.db import connection
from django.test import TransactionTestCase

from procurement.exceptions import StockInsufficient
from procurement.models import Item, StockMovement
from procurement.services import stock_ledger


@unittest.skipUnless(
    os.getenv("DJANGO_USE_POSTGRES_TEST") == "1",
    "Postgres integration test disabled (set DJANGO_USE_POSTGRES_TEST=1).",
)
class PostgresStockLedgerTest(TransactionTestCase):
    """Concurrent adjustments against one item row, on real row locks."""

    def setUp(self) -> None:
        if connection.vendor != "postgresql":
            self.skipTest("Postgres integration test requires Postgres (DJANGO_USE_SQLITE=0).")
        self.item = Item.objects.create(
            item_name="Bolt M8",
            unit="pcs",
            current_stock=10,
            create_by_id="tester",
            update_by_id="tester",
        )

    def _run_together(self, jobs) -> list:
        barrier = threading.Barrier(len(jobs))
        outcomes: list = [None] * len(jobs)

        def worker(index: int, job) -> None:
            try:
                barrier.wait()
                outcomes[index] = job()
            except Exception as exc:  # collected and asserted by the caller
                outcomes[index] = exc
            finally:
                connection.close()

        threads = [
            threading.Thread(target=worker, args=(index, job)) for index, job in enumerate(jobs)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)
        return outcomes

    def test_concurrent_subtractions_never_overdraw(self) -> None:
        stock, quantity, workers = 10, 3, 8

        outcomes = self._run_together(
            [
                lambda: stock_ledger.adjust(
                    self.item.item_id, quantity, stock_ledger.SUBTRACT, reason="Site use"
                )
                for _ in range(workers)
            ]
        )

        succeeded = [o for o in outcomes if isinstance(o, int)]
        refused = [o for o in outcomes if isinstance(o, StockInsufficient)]
        self.assertEqual(len(succeeded), stock // quantity)
        self.assertEqual(len(refused), workers - stock // quantity)
        self.item.refresh_from_db()
        self.assertEqual(self.item.current_stock, stock - quantity * (stock // quantity))
        self.assertGreaterEqual(self.item.current_stock, 0)
        self.assertEqual(
            StockMovement.objects.filter(item=self.item).count(), stock // quantity
        )

    def test_concurrent_additions_and_subtractions_balance(self) -> None:
        jobs = [
            lambda: stock_ledger.adjust(self.item.item_id, 2, stock_ledger.ADD, reason="GRN")
            for _ in range(5)
        ] + [
            lambda: stock_ledger.try_adjust(
                self.item.item_id, 2, stock_ledger.SUBTRACT, reason="Site use"
            )
            for _ in range(5)
        ]

        outcomes = self._run_together(jobs)

        self.assertFalse([o for o in outcomes if isinstance(o, Exception)])
        self.assertTrue(all(outcomes[5:]))
        self.item.refresh_from_db()
        self.assertEqual(self.item.current_stock, 10)
        self.assertEqual(StockMovement.objects.filter(item=self.item).count(), 10)
