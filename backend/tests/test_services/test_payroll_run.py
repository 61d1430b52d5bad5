import unittest

from fakes import (
    TX_HASH,
    WALLET_A,
    WALLET_B,
    WALLET_C,
    FakeLedger,
    add_employee,
    make_engine,
    make_session,
    make_settings,
)
from app.models.audit_log import AuditLog
from app.models.employee import Employee
from app.models.payroll import Payment, PayrollRun, RUN_LOCK_KEY
from app.services.errors import (
    BalanceUnavailable,
    DisbursementFailed,
    DisbursementOutcomeUnknown,
    InsufficientBalance,
    NotConfigured,
    RunInProgress,
)
from app.services.ledger import LedgerError
from app.services.payroll_calculator import RuleBasedEstimator
from app.services.payroll_run import PayrollRunner, acquire_run_lock, finish_run
from app.services.paystub import PaystubNotifier


class RecordingNotifier(PaystubNotifier):
    def __init__(self):
        self.sent = []

    def send(self, stub):
        self.sent.append(stub)


class PayrollRunnerTests(unittest.TestCase):
    def setUp(self):
        self.engine = make_engine()
        self.db = make_session(self.engine)
        self.ledger = FakeLedger(balance=10_000)
        self.notifier = RecordingNotifier()
        self.runner = self._runner()

        self.alice = add_employee(self.db, "Alice Smith", 52000, WALLET_A)
        self.bob = add_employee(self.db, "Bob Jones", 65000, WALLET_B)

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def _runner(self, **settings):
        return PayrollRunner(self.ledger, RuleBasedEstimator(), self.notifier, make_settings(**settings))

    def _runs(self):
        return self.db.query(PayrollRun).order_by(PayrollRun.id).all()

    # ---- happy path ----

    def test_success_pays_everyone_in_one_batch(self):
        out = self.runner.run(self.db)

        self.assertTrue(out["success"])
        self.assertEqual(out["paid"], 2)
        self.assertEqual(out["tx"], TX_HASH)
        self.assertEqual(out["explorer"], f"https://explorer.test/tx/{TX_HASH}")
        self.assertAlmostEqual(out["totalPaid"], 3600.0)
        self.assertEqual(out["blockNumber"], 1234)
        self.assertEqual(out["emailsSent"], 2)
        self.assertEqual(out["skipped"], [])
        self.assertEqual(out["recordUpdateFailures"], [])
        self.assertEqual([r["net_pay"] for r in out["payrollResults"]], [1600.0, 2000.0])

        self.assertEqual(len(self.ledger.submissions), 1)
        self.assertEqual(self.ledger.submissions[0]["amounts"], [1_600_000_000, 2_000_000_000])
        self.assertEqual(self.ledger.submissions[0]["total"], 3_600_000_000)

        self.db.expire_all()
        self.assertEqual({e.status for e in self.db.query(Employee).all()}, {"paid"})
        payments = self.db.query(Payment).all()
        self.assertEqual(len(payments), 2)
        self.assertTrue(all(p.status == "confirmed" and p.tx_hash == TX_HASH for p in payments))

        run = self._runs()[0]
        self.assertEqual(run.status, "confirmed")
        self.assertIsNone(run.lock_key)
        self.assertEqual(run.block_number, 1234)
        self.assertEqual(run.employee_count, 2)

        self.assertEqual(self.db.query(AuditLog).filter(AuditLog.action == "payroll_confirmed").count(), 1)
        self.assertTrue(self.notifier.sent[0].subject.startswith("Your Paystream AI Pay Stub - $1600.00"))

    def test_second_run_finds_nothing_pending(self):
        self.runner.run(self.db)
        out = self.runner.run(self.db)

        self.assertFalse(out["success"])
        self.assertEqual(out["message"], "No pending employees to process")
        self.assertEqual(len(self.ledger.submissions), 1)
        self.assertEqual(self._runs()[-1].status, "nothing_to_pay")

    def test_overtime_hours_flow_into_amounts(self):
        out = self.runner.run(self.db, hours={str(self.bob.id): 85})
        self.assertAlmostEqual(out["payrollResults"][1]["net_pay"], 2187.5)
        self.assertEqual(self.ledger.submissions[0]["amounts"][1], 2_187_500_000)

    def test_test_cap_splits_total_evenly(self):
        runner = self._runner(test_total_cap=1.0)
        out = runner.run(self.db)

        self.assertEqual(self.ledger.submissions[0]["amounts"], [500_000, 500_000])
        self.assertEqual(self.ledger.submissions[0]["total"], 1_000_000)
        self.assertEqual({r["source"] for r in out["payrollResults"]}, {"test_cap"})

    # ---- preconditions ----

    def test_no_pending_employees_never_touches_ledger(self):
        for emp in self.db.query(Employee).all():
            emp.status = "paid"
        self.db.commit()

        out = self.runner.run(self.db)

        self.assertFalse(out["success"])
        self.assertEqual(self.ledger.balance_reads, 0)
        self.assertEqual(self.ledger.submissions, [])

    def test_not_configured_checked_before_anything_else(self):
        self.ledger._batch_payer = False
        with self.assertRaises(NotConfigured):
            self.runner.run(self.db)
        self.assertEqual(self.ledger.balance_reads, 0)
        self.assertEqual(self._runs(), [])

    def test_shortfall_aborts_without_submission(self):
        self.ledger.balance_units = 3_590_000_000

        with self.assertRaises(InsufficientBalance) as ctx:
            self.runner.run(self.db)

        err = ctx.exception
        self.assertEqual(err.shortfall, 10.0)
        self.assertEqual(err.details, {
            "required": 3600.0,
            "available": 3590.0,
            "shortfall": 10.0,
            "employeeCount": 2,
        })
        self.assertEqual(self.ledger.submissions, [])

        self.db.expire_all()
        self.assertEqual({e.status for e in self.db.query(Employee).all()}, {"pending"})
        run = self._runs()[0]
        self.assertEqual(run.status, "aborted")
        self.assertIsNone(run.lock_key)

    def test_unreadable_balance_aborts(self):
        self.ledger.balance_error = LedgerError("rpc down")
        with self.assertRaises(BalanceUnavailable):
            self.runner.run(self.db)
        self.assertEqual(self.ledger.submissions, [])

    def test_missing_wallet_is_skipped_but_reported(self):
        carol = add_employee(self.db, "Carol White", 70000, None)

        out = self.runner.run(self.db)

        self.assertTrue(out["success"])
        self.assertEqual(out["paid"], 2)
        self.assertEqual(len(out["payrollResults"]), 3)
        self.assertEqual(out["skipped"][0]["employee_id"], str(carol.id))
        self.assertEqual(out["skipped"][0]["error"], "INVALID_RECIPIENT")
        self.assertNotIn(None, self.ledger.submissions[0]["recipients"])

        self.db.expire_all()
        self.assertEqual(self.db.get(Employee, carol.id).status, "pending")

    def test_missing_salary_is_skipped_and_others_still_paid(self):
        dave = add_employee(self.db, "Dave Brown", None, WALLET_C)

        out = self.runner.run(self.db)

        self.assertTrue(out["success"])
        self.assertEqual(out["paid"], 2)
        self.assertEqual(out["skipped"], [{
            "employee_id": str(dave.id),
            "employee_name": "Dave Brown",
            "error": "INVALID_RECIPIENT",
            "message": "no salary on file",
        }])
        self.assertEqual(self.ledger.submissions[0]["recipients"], [WALLET_A, WALLET_B])

        self.db.expire_all()
        self.assertEqual(self.db.get(Employee, dave.id).status, "pending")

    def test_test_cap_split_only_across_paid_employees(self):
        add_employee(self.db, "Carol White", 70000, None)
        runner = self._runner(test_total_cap=1.0)

        out = runner.run(self.db)

        self.assertEqual(self.ledger.submissions[0]["amounts"], [500_000, 500_000])
        self.assertEqual(self.ledger.submissions[0]["total"], 1_000_000)
        self.assertEqual([r["source"] for r in out["payrollResults"]], ["test_cap", "test_cap", "rules"])

    def test_only_walletless_employees_is_nothing_to_pay(self):
        for emp in (self.alice, self.bob):
            emp.wallet_address = None
        self.db.commit()

        out = self.runner.run(self.db)

        self.assertFalse(out["success"])
        self.assertEqual(len(out["skipped"]), 2)
        self.assertEqual(self.ledger.submissions, [])

    # ---- ledger outcomes ----

    def test_revert_marks_run_failed_and_leaves_employees_pending(self):
        self.ledger.receipt_status = 0

        with self.assertRaises(DisbursementFailed):
            self.runner.run(self.db)

        self.db.expire_all()
        run = self._runs()[0]
        self.assertEqual(run.status, "failed")
        self.assertEqual(run.tx_hash, TX_HASH)
        self.assertIsNone(run.lock_key)
        self.assertEqual({e.status for e in self.db.query(Employee).all()}, {"pending"})

    def test_unknown_outcome_keeps_lock_and_blocks_next_run(self):
        self.ledger.receipt_timeout = True

        with self.assertRaises(DisbursementOutcomeUnknown):
            self.runner.run(self.db)

        self.db.expire_all()
        run = self._runs()[0]
        self.assertEqual(run.status, "unknown")
        self.assertEqual(run.lock_key, RUN_LOCK_KEY)
        self.assertEqual(run.tx_hash, TX_HASH)
        self.assertEqual({p.status for p in self.db.query(Payment).all()}, {"submitted"})

        self.ledger.receipt_timeout = False
        with self.assertRaises(RunInProgress):
            self.runner.run(self.db)
        self.assertEqual(len(self.ledger.submissions), 1)


class RunLockTests(unittest.TestCase):
    def setUp(self):
        self.engine = make_engine()
        self.db = make_session(self.engine)

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def test_second_lock_refused_until_released(self):
        first = acquire_run_lock(self.db, "biweekly")

        with self.assertRaises(RunInProgress) as ctx:
            acquire_run_lock(self.db, "biweekly")
        self.assertEqual(ctx.exception.details["runId"], first.id)

        finish_run(self.db, first, "confirmed")
        second = acquire_run_lock(self.db, "weekly")
        self.assertNotEqual(second.id, first.id)

    def test_unknown_status_keeps_lock(self):
        run = acquire_run_lock(self.db, "biweekly")
        finish_run(self.db, run, "unknown", error="no receipt")
        self.assertEqual(run.lock_key, RUN_LOCK_KEY)
        self.assertIsNone(run.completed_at)


if __name__ == "__main__":
    unittest.main()
