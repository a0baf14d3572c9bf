#!/usr/bin/env python3
"""
Unit tests for the exam controller and its XML-RPC facade
"""

import unittest
import threading
import tempfile
from unittest.mock import patch
import sys
import os

# Add parent directory to path for imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from metadata_store import ExamMetadata, U64_MAX
from server import ExamController, ProctorService, create_server
from proctor_client import ProctorClient

USER_A = bytes([0x01] * 32)
USER_B = bytes([0x02] * 32)
USER_A_HEX = USER_A.hex()


class TestExamController(unittest.TestCase):
    """Test cases for ExamController with the guarded end policy"""

    def setUp(self):
        self.controller = ExamController()

    def assertDefaultReads(self, user):
        self.assertIsNone(self.controller.get_metadata(user))
        self.assertIsNone(self.controller.get_start_time(user))
        self.assertIsNone(self.controller.get_end_time(user))
        self.assertEqual(self.controller.get_violation_times(user), (None, None, None))
        self.assertFalse(self.controller.is_kicked(user))

    def test_unknown_user_reads_defaults(self):
        self.assertDefaultReads(USER_A)

    def test_unknown_end_policy(self):
        with self.assertRaises(ValueError):
            ExamController(end_policy="lenient")

    def test_set_start_overwrites(self):
        self.assertTrue(self.controller.set_start(USER_A, 1000))
        self.assertEqual(self.controller.get_start_time(USER_A), 1000)

        self.controller.set_start(USER_A, 900)
        self.assertEqual(self.controller.get_start_time(USER_A), 900)

    def test_three_violations_kick(self):
        for ts in (1100, 1200, 1300):
            self.assertTrue(self.controller.add_violation(USER_A, ts))

        self.assertEqual(self.controller.get_violation_times(USER_A), (1100, 1200, 1300))
        self.assertTrue(self.controller.is_kicked(USER_A))

        # Fourth violation is dropped
        self.assertFalse(self.controller.add_violation(USER_A, 1400))
        self.assertEqual(self.controller.get_violation_times(USER_A), (1100, 1200, 1300))
        self.assertTrue(self.controller.is_kicked(USER_A))

    def test_kicked_only_after_three(self):
        # Timestamps out of order are accepted as given
        for count, ts in enumerate((500, 20, 999), start=1):
            self.controller.add_violation(USER_A, ts)
            self.assertEqual(self.controller.is_kicked(USER_A), count == 3)

    def test_violation_creates_record_for_unstarted_user(self):
        self.controller.add_violation(USER_A, 5)
        meta = self.controller.get_metadata(USER_A)
        self.assertIsNotNone(meta)
        self.assertIsNone(meta.start_time)
        self.assertEqual(meta.violations, (5, None, None))

    def test_guarded_end_requires_start(self):
        self.assertFalse(self.controller.set_end(USER_A, 2000))
        self.assertIsNone(self.controller.get_end_time(USER_A))
        # A rejected end writes nothing
        self.assertIsNone(self.controller.get_metadata(USER_A))

    def test_guarded_end_must_follow_start(self):
        self.controller.set_start(USER_A, 100)
        self.assertFalse(self.controller.set_end(USER_A, 100))
        self.assertIsNone(self.controller.get_end_time(USER_A))
        self.assertFalse(self.controller.set_end(USER_A, 50))
        self.assertIsNone(self.controller.get_end_time(USER_A))

        self.assertTrue(self.controller.set_end(USER_A, 101))
        self.assertEqual(self.controller.get_end_time(USER_A), 101)

    def test_guarded_end_keeps_other_fields(self):
        self.controller.set_start(USER_A, 100)
        self.controller.add_violation(USER_A, 150)
        self.controller.set_end(USER_A, 200)
        self.assertEqual(
            self.controller.get_metadata(USER_A),
            ExamMetadata(start_time=100, end_time=200, violations=(150, None, None))
        )

    def test_permissive_end_always_applies(self):
        controller = ExamController(end_policy="permissive")
        self.assertTrue(controller.set_end(USER_A, 50))
        self.assertEqual(controller.get_end_time(USER_A), 50)

        controller.set_start(USER_A, 100)
        self.assertTrue(controller.set_end(USER_A, 100))
        self.assertEqual(controller.get_end_time(USER_A), 100)

    def test_users_do_not_interfere(self):
        self.controller.set_start(USER_B, 1)
        for ts in (2, 3, 4):
            self.controller.add_violation(USER_B, ts)
        self.controller.set_end(USER_B, 10)

        self.assertDefaultReads(USER_A)
        self.assertTrue(self.controller.is_kicked(USER_B))

    def test_reads_are_idempotent(self):
        self.controller.set_start(USER_A, 10)
        self.controller.add_violation(USER_A, 11)
        for read in (self.controller.get_metadata, self.controller.get_start_time,
                     self.controller.get_end_time, self.controller.get_violation_times,
                     self.controller.is_kicked):
            self.assertEqual(read(USER_A), read(USER_A))

    def test_concurrent_violations(self):
        """Only three of many concurrent violations are recorded"""
        results = []
        barrier = threading.Barrier(8)

        def worker(ts):
            barrier.wait()
            results.append(self.controller.add_violation(USER_A, ts))

        threads = [threading.Thread(target=worker, args=(ts,)) for ts in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(results.count(True), 3)
        self.assertTrue(all(v is not None for v in self.controller.get_violation_times(USER_A)))
        self.assertTrue(self.controller.is_kicked(USER_A))

    def test_event_log_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "events.log")
            controller = ExamController(event_log_path=path)
            controller.set_start(USER_A, 1)
            controller.add_violation(USER_A, 2)

            with open(path) as f:
                lines = f.read().splitlines()
            self.assertEqual(len(lines), 2)
            self.assertIn("exam_started", lines[0])
            self.assertIn("violation_recorded", lines[1])

    def test_unwritable_event_log_does_not_fail_transition(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "missing_dir", "events.log")
            service = ProctorService(ExamController(event_log_path=path))

            with self.assertLogs("server", level="ERROR"):
                result = service.add_violation(USER_A_HEX, "5")

            self.assertTrue(result["success"])
            self.assertTrue(result["applied"])
            self.assertEqual(service.controller.get_violation_times(USER_A), (5, None, None))


class TestProctorService(unittest.TestCase):
    """Test cases for the XML-RPC facade"""

    def setUp(self):
        self.service = ProctorService(ExamController())

    def test_set_start_with_string_timestamp(self):
        result = self.service.set_start(USER_A_HEX, str(U64_MAX))
        self.assertTrue(result["success"])
        self.assertTrue(result["applied"])

        result = self.service.get_start_time(USER_A_HEX)
        self.assertEqual(result, {"success": True, "start_time": str(U64_MAX)})

    def test_add_violation_results(self):
        for ts in ("1", "2"):
            result = self.service.add_violation(USER_A_HEX, ts)
            self.assertTrue(result["applied"])
            self.assertFalse(result["kicked"])

        result = self.service.add_violation(USER_A_HEX, "3")
        self.assertTrue(result["applied"])
        self.assertTrue(result["kicked"])

        result = self.service.add_violation(USER_A_HEX, "4")
        self.assertTrue(result["success"])
        self.assertFalse(result["applied"])
        self.assertIn("dropped", result["message"])

    def test_add_violation_kicked_from_same_update(self):
        for ts in ("1", "2"):
            self.service.add_violation(USER_A_HEX, ts)

        with patch.object(self.service.controller, "is_kicked") as mock_is_kicked:
            result = self.service.add_violation(USER_A_HEX, "3")
            mock_is_kicked.assert_not_called()
        self.assertTrue(result["kicked"])

    def test_record_violation_returns_stored_record(self):
        applied, meta = self.service.controller.record_violation(USER_A, 7)
        self.assertTrue(applied)
        self.assertEqual(meta, self.service.controller.get_metadata(USER_A))

    def test_set_end_rejection_is_not_failure(self):
        result = self.service.set_end(USER_A_HEX, 10)
        self.assertTrue(result["success"])
        self.assertFalse(result["applied"])

    def test_invalid_arguments(self):
        result = self.service.set_start("not-hex", 1)
        self.assertFalse(result["success"])

        result = self.service.add_violation(USER_A_HEX, "-1")
        self.assertFalse(result["success"])
        self.assertIsNone(self.service.controller.get_metadata(USER_A))

        result = self.service.get_metadata("abcd")
        self.assertFalse(result["success"])

    def test_reads_for_unknown_user(self):
        self.assertEqual(self.service.get_metadata(USER_A_HEX), {"success": True, "metadata": None})
        self.assertIsNone(self.service.get_end_time(USER_A_HEX)["end_time"])
        self.assertEqual(self.service.get_violation_times(USER_A_HEX)["violations"], [None, None, None])
        self.assertFalse(self.service.is_kicked(USER_A_HEX)["kicked"])

    def test_get_metadata(self):
        self.service.set_start(USER_A_HEX, 100)
        self.service.add_violation(USER_A_HEX, 150)
        self.service.set_end(USER_A_HEX, 200)

        result = self.service.get_metadata(USER_A_HEX)
        self.assertEqual(result["metadata"], {
            "start_time": "100",
            "end_time": "200",
            "violations": ["150", None, None],
            "kicked": False,
        })

    def test_get_status(self):
        self.service.set_start(USER_A_HEX, 1)
        result = self.service.get_status()
        self.assertEqual(result, {"success": True, "end_policy": "guarded", "users": 1})


class TestServerIntegration(unittest.TestCase):
    """Round trip through a live XML-RPC server and the proctor client"""

    def setUp(self):
        self.server, self.service = create_server(port=0, end_policy="guarded",
                                                  host="127.0.0.1", event_log_path=None)
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self.thread.start()
        self.url = f"http://127.0.0.1:{self.server.server_address[1]}"

    def tearDown(self):
        self.server.shutdown()
        self.server.server_close()
        self.thread.join(timeout=5)

    def test_full_exam_workflow(self):
        client = ProctorClient(USER_A_HEX, self.url)
        observer = ProctorClient(USER_A, self.url)

        self.assertIsNone(observer.fetch_metadata())

        self.assertTrue(client.report_start(1_700_000_000_000))
        for offset in (1, 2, 3):
            self.assertTrue(client.report_violation(1_700_000_000_000 + offset))
        self.assertFalse(client.report_violation(1_700_000_000_004))
        self.assertTrue(client.kicked)

        self.assertFalse(client.report_end(1_700_000_000_000))
        self.assertTrue(client.report_end(1_700_000_000_100))

        meta = observer.fetch_metadata()
        self.assertEqual(meta, ExamMetadata(
            start_time=1_700_000_000_000,
            end_time=1_700_000_000_100,
            violations=(1_700_000_000_001, 1_700_000_000_002, 1_700_000_000_003),
        ))
        self.assertTrue(observer.is_kicked())


if __name__ == "__main__":
    unittest.main()
