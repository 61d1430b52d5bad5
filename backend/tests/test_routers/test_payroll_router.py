import unittest
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from fakes import TX_HASH, WALLET_A, WALLET_B, FakeLedger, add_employee, make_engine, make_session, make_settings
from main import app
from app.database import get_db
from app.dependencies import get_ledger, get_payroll_runner, get_settings
from app.models.payroll import PayrollRun
from app.services.ledger import TxReceipt
from app.services.payroll_calculator import RuleBasedEstimator
from app.services.payroll_run import PayrollRunner
from app.services.paystub import LoggingPaystubNotifier


class PayrollRouterTests(unittest.TestCase):
    def setUp(self):
        self.engine = make_engine()
        self.db = make_session(self.engine)
        self.ledger = FakeLedger(balance=10_000)
        self.settings = make_settings()

        add_employee(self.db, "Alice Smith", 52000, WALLET_A)
        add_employee(self.db, "Bob Jones", 65000, WALLET_B)

        def _db():
            yield self.db

        app.dependency_overrides[get_db] = _db
        app.dependency_overrides[get_settings] = lambda: self.settings
        app.dependency_overrides[get_ledger] = lambda: self.ledger
        app.dependency_overrides[get_payroll_runner] = lambda: PayrollRunner(
            self.ledger, RuleBasedEstimator(), LoggingPaystubNotifier(), self.settings,
        )
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()
        self.db.close()
        self.engine.dispose()

    # --- GET /api/payroll ---

    def test_pending_list(self):
        resp = self.client.get("/api/payroll")
        self.assertEqual(resp.status_code, 200, resp.text)
        body = resp.json()
        self.assertEqual(body["pendingCount"], 2)
        self.assertEqual([e["name"] for e in body["employees"]], ["Alice Smith", "Bob Jones"])

    # --- POST /api/payroll ---

    def test_run_without_body(self):
        resp = self.client.post("/api/payroll")
        self.assertEqual(resp.status_code, 200, resp.text)
        body = resp.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["paid"], 2)
        self.assertEqual(body["tx"], TX_HASH)
        self.assertEqual(body["totalPaid"], 3600.0)
        self.assertEqual(len(body["payrollResults"]), 2)

    def test_run_with_hours_and_period(self):
        resp = self.client.post("/api/payroll", json={"pay_period": "weekly", "hours": {"2": 45}})
        self.assertEqual(resp.status_code, 200, resp.text)
        results = resp.json()["payrollResults"]
        self.assertEqual(results[0]["pay_period"], "weekly")
        self.assertEqual(results[1]["ot_hours"], 5)

    def test_bad_pay_period_is_422(self):
        resp = self.client.post("/api/payroll", json={"pay_period": "daily"})
        self.assertEqual(resp.status_code, 422)

    def test_negative_hours_is_422(self):
        resp = self.client.post("/api/payroll", json={"hours": {"1": -3}})
        self.assertEqual(resp.status_code, 422)

    def test_nothing_pending_is_200_with_success_false(self):
        self.client.post("/api/payroll")
        resp = self.client.post("/api/payroll")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["success"], False)
        self.assertEqual(resp.json()["message"], "No pending employees to process")

    def test_insufficient_balance_payload(self):
        self.ledger.balance_units = 3_590_000_000
        resp = self.client.post("/api/payroll")
        self.assertEqual(resp.status_code, 400, resp.text)
        body = resp.json()
        self.assertFalse(body["success"])
        self.assertEqual(body["error"], "INSUFFICIENT_BALANCE")
        self.assertEqual(body["details"], {
            "required": 3600.0, "available": 3590.0, "shortfall": 10.0, "employeeCount": 2,
        })
        self.assertEqual(self.ledger.submissions, [])

    def test_batch_payer_not_deployed_is_503(self):
        self.ledger._batch_payer = False
        resp = self.client.post("/api/payroll")
        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.json()["error"], "NOT_CONFIGURED")

    def test_unknown_outcome_is_504_then_409(self):
        self.ledger.receipt_timeout = True
        resp = self.client.post("/api/payroll")
        self.assertEqual(resp.status_code, 504, resp.text)
        self.assertEqual(resp.json()["details"], {"tx": TX_HASH})

        resp = self.client.post("/api/payroll")
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["error"], "RUN_IN_PROGRESS")

    def test_unexpected_error_is_500(self):
        runner = MagicMock()
        runner.run.side_effect = RuntimeError("boom")
        app.dependency_overrides[get_payroll_runner] = lambda: runner

        resp = self.client.post("/api/payroll")
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json(), {
            "success": False, "error": "INTERNAL_ERROR", "message": "Internal server error",
        })

    def test_rpc_error_after_broadcast_is_structured_unknown_outcome(self):
        self.ledger.wait_error = ValueError({"code": -32000, "message": "header not found"})

        resp = self.client.post("/api/payroll")

        self.assertEqual(resp.status_code, 504, resp.text)
        body = resp.json()
        self.assertFalse(body["success"])
        self.assertEqual(body["error"], "DISBURSEMENT_OUTCOME_UNKNOWN")
        self.assertEqual(body["details"], {"tx": TX_HASH})
        self.assertEqual(len(self.ledger.submissions), 1)

        run = self.db.query(PayrollRun).one()
        self.assertEqual(run.status, "unknown")
        self.assertEqual(run.tx_hash, TX_HASH)

    # --- runs & reconcile ---

    def test_list_runs(self):
        self.client.post("/api/payroll")
        resp = self.client.get("/api/payroll/runs")
        self.assertEqual(resp.status_code, 200)
        runs = resp.json()["runs"]
        self.assertEqual(len(runs), 1)
        self.assertEqual(runs[0]["status"], "confirmed")
        self.assertEqual(runs[0]["tx_hash"], TX_HASH)

    def test_reconcile_unknown_run_is_404(self):
        resp = self.client.post("/api/payroll/runs/999/reconcile")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["error"], "RUN_NOT_FOUND")

    def test_reconcile_unknown_run_once_receipt_lands(self):
        self.ledger.receipt_timeout = True
        self.client.post("/api/payroll")
        run_id = self.db.query(PayrollRun).one().id

        self.ledger.chain_receipt = TxReceipt(tx_hash=TX_HASH, status=1, block_number=77, gas_used=250_000)
        resp = self.client.post(f"/api/payroll/runs/{run_id}/reconcile")

        self.assertEqual(resp.status_code, 200, resp.text)
        body = resp.json()
        self.assertEqual(body["outcome"], "confirmed")
        self.assertEqual(body["run"]["status"], "confirmed")
        self.assertEqual(body["employeesUpdated"], 2)


if __name__ == "__main__":
    unittest.main()
