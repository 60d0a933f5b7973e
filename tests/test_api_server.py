import tempfile
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

from catalog_fixtures import sample_snapshot, sample_store

from coursenav.api_server import create_app, open_catalog
from coursenav.dispatcher import Dispatcher
from coursenav.metrics import MetricsCollector
from coursenav.rate_limiter import RateLimiter

SAMPLE_SEED = Path(__file__).resolve().parent.parent / "data" / "sample_catalog.json"


class TestApiServer(unittest.TestCase):
    def setUp(self):
        dispatcher = Dispatcher(
            sample_store(),
            rate_limiter=RateLimiter(max_requests=1000, window_s=60),
            metrics=MetricsCollector(),
        )
        self.client_cm = TestClient(create_app(dispatcher))
        self.client = self.client_cm.__enter__()

    def tearDown(self):
        self.client_cm.__exit__(None, None, None)

    def test_health(self):
        resp = self.client.get("/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"status": "ok"})

    def test_text_then_token_interaction(self):
        resp = self.client.post("/interactions", json={"conversation_id": "42", "text": "/start"})
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["conversation_id"], "42")
        self.assertEqual(body["outcome"]["kind"], "navigation")
        token = body["outcome"]["items"][0]["token"]

        resp = self.client.post("/interactions", json={"conversation_id": "42", "token": token})
        outcome = resp.json()["outcome"]
        self.assertEqual(outcome["title"], "College of Engineering")
        self.assertEqual(outcome["breadcrumb"], "College of Engineering")

    def test_search_payload_has_pagination(self):
        resp = self.client.post("/interactions", json={"conversation_id": "7", "text": "/search Midterm"})
        outcome = resp.json()["outcome"]
        self.assertEqual(outcome["kind"], "search")
        self.assertEqual(outcome["counts"], {"courses": 0, "chapters": 1, "resources": 3})
        self.assertEqual(outcome["pagination"]["page"], 0)
        self.assertIsNone(outcome["pagination"]["next_token"])
        self.assertEqual(len(outcome["filters"]), 4)

    def test_request_needs_exactly_one_of_token_or_text(self):
        resp = self.client.post("/interactions", json={"conversation_id": "1"})
        self.assertEqual(resp.status_code, 422)
        resp = self.client.post("/interactions", json={"conversation_id": "1", "token": "noop", "text": "/start"})
        self.assertEqual(resp.status_code, 422)

    def test_bad_token_is_an_outcome_not_an_http_error(self):
        resp = self.client.post("/interactions", json={"conversation_id": "1", "token": "garbage"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["outcome"]["kind"], "encoding_error")

    def test_metrics_endpoint(self):
        self.client.post("/interactions", json={"conversation_id": "1", "text": "/start"})
        summary = self.client.get("/metrics").json()
        self.assertEqual(summary["throughput"]["total_requests"], 1)
        self.assertIn("rss_mb", summary["memory"])


class TestOpenCatalog(unittest.TestCase):
    def test_seeds_empty_database_once(self):
        with tempfile.TemporaryDirectory() as tmp:
            db_path = Path(tmp) / "catalog.sqlite"
            store = open_catalog(db_path, SAMPLE_SEED)
            try:
                self.assertFalse(store.is_empty())
                store.replace_snapshot(sample_snapshot())
            finally:
                store.close()

            reopened = open_catalog(db_path, SAMPLE_SEED)
            try:
                # Existing rows are kept; the seed only fills an empty catalog.
                self.assertEqual(len(reopened.list_courses("cs")), 2)
                self.assertIsNotNone(reopened.get_document("cs101-ch1"))
                self.assertIsNone(reopened.get_document("cs101-ch1-slides"))
            finally:
                reopened.close()


if __name__ == "__main__":
    unittest.main()
