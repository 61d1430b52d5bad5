import json
import unittest

import httpx

from fakes import gemini_client, gemini_json, gemini_reply
from app.services.errors import EstimateUnavailable
from app.services.gemini import GeminiError
from app.services.payroll_calculator import (
    FallbackEstimator,
    GeminiPayrollEstimator,
    PayrollInput,
    RuleBasedEstimator,
    build_estimator,
)

INP = PayrollInput(
    employee_id="3",
    employee_name="Ada Lovelace",
    salary_annual=65000,
    hours_this_period=85,
    pay_period="biweekly",
)

GOOD_ANSWER = {
    "base_pay": 2500,
    "ot_hours": 5,
    "ot_pay": 234.38,
    "gross_pay": 2734.38,
    "total_tax_estimated": 546.88,
    "net_pay": 2187.5,
}


class GeminiClientTests(unittest.TestCase):
    def test_posts_prompt_and_concatenates_parts(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "candidates": [{"content": {"parts": [{"text": "Hello "}, {"text": "there"}]}}],
            })

        text = gemini_client(handler).generate("hi", system="be brief", json_mode=True)

        self.assertEqual(text, "Hello there")
        self.assertIn(":generateContent", seen["url"])
        self.assertIn("key=test-key", seen["url"])
        self.assertEqual(seen["body"]["contents"][0]["parts"][0]["text"], "hi")
        self.assertEqual(seen["body"]["systemInstruction"]["parts"][0]["text"], "be brief")
        self.assertEqual(seen["body"]["generationConfig"]["responseMimeType"], "application/json")

    def test_http_error_status_raises(self):
        client = gemini_client(lambda request: httpx.Response(429, text="quota"))
        with self.assertRaises(GeminiError):
            client.generate("hi")

    def test_empty_candidates_raise(self):
        client = gemini_client(lambda request: httpx.Response(200, json={"candidates": []}))
        with self.assertRaises(GeminiError):
            client.generate("hi")

    def test_list_body_raises(self):
        client = gemini_client(lambda request: httpx.Response(200, json=[{"candidates": []}]))
        with self.assertRaises(GeminiError):
            client.generate("hi")

    def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with self.assertRaises(GeminiError):
            gemini_client(handler).generate("hi")


class GeminiPayrollEstimatorTests(unittest.TestCase):
    def test_consistent_answer_accepted(self):
        r = GeminiPayrollEstimator(gemini_json(GOOD_ANSWER)).estimate(INP)
        self.assertEqual(r.source, "ai")
        self.assertAlmostEqual(r.net_pay, 2187.5)
        self.assertEqual(r.hours_worked, 85)

    def test_fenced_json_accepted(self):
        text = "```json\n" + json.dumps(GOOD_ANSWER) + "\n```"
        client = gemini_client(lambda request: httpx.Response(200, json=gemini_reply(text)))
        r = GeminiPayrollEstimator(client).estimate(INP)
        self.assertAlmostEqual(r.gross_pay, 2734.38)

    def test_inconsistent_net_rejected(self):
        bad = dict(GOOD_ANSWER, net_pay=3000)
        with self.assertRaises(EstimateUnavailable):
            GeminiPayrollEstimator(gemini_json(bad)).estimate(INP)

    def test_gross_far_from_rules_rejected(self):
        bad = dict(GOOD_ANSWER, base_pay=5000, gross_pay=5234.38, total_tax_estimated=1046.88, net_pay=4187.5)
        with self.assertRaises(EstimateUnavailable):
            GeminiPayrollEstimator(gemini_json(bad)).estimate(INP)

    def test_missing_field_rejected(self):
        bad = {k: v for k, v in GOOD_ANSWER.items() if k != "ot_pay"}
        with self.assertRaises(EstimateUnavailable):
            GeminiPayrollEstimator(gemini_json(bad)).estimate(INP)

    def test_non_json_rejected(self):
        client = gemini_client(lambda request: httpx.Response(200, json=gemini_reply("about $2,187")))
        with self.assertRaises(EstimateUnavailable):
            GeminiPayrollEstimator(client).estimate(INP)


class FallbackEstimatorTests(unittest.TestCase):
    def test_falls_back_to_rules_when_ai_unavailable(self):
        client = gemini_client(lambda request: httpx.Response(500, text="boom"))
        estimator = FallbackEstimator(GeminiPayrollEstimator(client), RuleBasedEstimator())

        with self.assertLogs("app.services.payroll_calculator", level="WARNING"):
            r = estimator.estimate(INP)

        self.assertEqual(r.source, "rules")
        self.assertAlmostEqual(r.net_pay, 2187.5)

    def test_uses_primary_when_it_answers(self):
        estimator = FallbackEstimator(GeminiPayrollEstimator(gemini_json(GOOD_ANSWER)), RuleBasedEstimator())
        self.assertEqual(estimator.estimate(INP).source, "ai")


class BuildEstimatorTests(unittest.TestCase):
    def test_rules_only_without_client(self):
        est = build_estimator(tax_rate=0.2, overtime_multiplier=1.5)
        self.assertIsInstance(est, RuleBasedEstimator)

    def test_fallback_with_client(self):
        est = build_estimator(tax_rate=0.2, overtime_multiplier=1.5, gemini=gemini_json(GOOD_ANSWER))
        self.assertIsInstance(est, FallbackEstimator)


if __name__ == "__main__":
    unittest.main()
