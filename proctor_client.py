#!/usr/bin/env python3
"""
Exam Proctoring Ledger - Proctor Client
Used by the monitored exam client to report start, violations and end, and by
the oversight party to read a user's record back
"""

import time
import json
import logging
from typing import Dict, Optional
import xmlrpc.client

import config
from metadata_store import ExamMetadata, UserId, parse_user_id

logger = logging.getLogger(__name__)


def now_timestamp() -> int:
    """Milliseconds since the epoch, for callers that need a timestamp"""
    return int(time.time() * 1000)


class ProctorClient:
    """Client for one user's exam record on the proctoring server"""

    def __init__(self, user, server_url: str = config.SERVER_URL):
        self.user: UserId = parse_user_id(user)
        self.user_hex = self.user.hex()
        self.server_url = server_url
        self.kicked = False

        self.proxy = xmlrpc.client.ServerProxy(server_url, allow_none=True)

        logger.info(f"Proctor client for {self.user_hex} using {server_url}")

    def _log_event(self, event: str, data: Dict = None):
        logger.info(f"USER {self.user_hex}: {event} - {json.dumps(data)}")

    def _call(self, method: str, *args) -> Optional[Dict]:
        """Invoke an RPC method; None on transport error or failed result"""
        try:
            result = getattr(self.proxy, method)(self.user_hex, *args)
        except Exception as e:
            logger.error(f"{method} error: {e}")
            return None

        if not result.get("success"):
            logger.error(f"{method} failed: {result.get('message')}")
            return None
        return result

    def report_start(self, start_time: int) -> bool:
        # Timestamps go as strings to avoid XML-RPC i4 limits
        result = self._call("set_start", str(start_time))
        if result is None:
            return False
        self._log_event("start_reported", {"start_time": start_time})
        return result.get("applied", False)

    def report_violation(self, violation_time: int) -> bool:
        """Report a violation; False if it was not recorded"""
        result = self._call("add_violation", str(violation_time))
        if result is None:
            return False

        self.kicked = result.get("kicked", self.kicked)
        self._log_event("violation_reported", {
            "violation_time": violation_time,
            "applied": result.get("applied"),
            "kicked": self.kicked,
        })
        if self.kicked:
            logger.warning(f"User {self.user_hex} has been kicked")
        return result.get("applied", False)

    def report_end(self, end_time: int) -> bool:
        result = self._call("set_end", str(end_time))
        if result is None:
            return False
        self._log_event("end_reported", {"end_time": end_time, "applied": result.get("applied")})
        return result.get("applied", False)

    def fetch_metadata(self) -> Optional[ExamMetadata]:
        """Full record from the server, None if absent or unreachable"""
        result = self._call("get_metadata")
        if result is None or result.get("metadata") is None:
            return None
        meta = ExamMetadata.from_dict(result["metadata"])
        self.kicked = meta.kicked
        return meta

    def is_kicked(self) -> bool:
        result = self._call("is_kicked")
        if result is None:
            return self.kicked
        self.kicked = bool(result.get("kicked"))
        return self.kicked


if __name__ == "__main__":
    import sys

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if len(sys.argv) < 2:
        print("Usage: python proctor_client.py <user_hex> [server_url]")
        sys.exit(1)

    server_url = sys.argv[2] if len(sys.argv) > 2 else config.SERVER_URL
    client = ProctorClient(sys.argv[1], server_url)

    meta = client.fetch_metadata()
    if meta is None:
        print(f"No exam record for {client.user_hex}")
    else:
        print(json.dumps(meta.to_dict(), indent=2))
