#!/usr/bin/env python3
"""
Exam Proctoring Ledger - Live Smoke Check
Runs one exam lifecycle against a running server and gateway
"""

import os
import sys
import xmlrpc.client

import requests

import config

WEB_URL = f"http://127.0.0.1:{config.WEB_PORT}"


def check_server_connection():
    print("Checking server connection...")
    try:
        proxy = xmlrpc.client.ServerProxy(config.SERVER_URL, allow_none=True)
        if proxy.get_status().get("success"):
            print("✓ Server is responding")
            return True
        print("✗ Server returned error")
        return False
    except Exception as e:
        print(f"✗ Server connection failed: {e}")
        return False


def check_lifecycle():
    """Start, three violations, a dropped fourth, end, over XML-RPC"""
    print("Checking exam lifecycle...")
    user = os.urandom(32).hex()
    try:
        proxy = xmlrpc.client.ServerProxy(config.SERVER_URL, allow_none=True)

        if not proxy.set_start(user, "1000").get("applied"):
            print("✗ set_start not applied")
            return False

        for ts in ("1100", "1200", "1300"):
            if not proxy.add_violation(user, ts).get("applied"):
                print(f"✗ violation {ts} not recorded")
                return False

        result = proxy.add_violation(user, "1400")
        if result.get("applied") or not result.get("kicked"):
            print("✗ fourth violation should be dropped with user kicked")
            return False

        proxy.set_end(user, "2000")
        meta = proxy.get_metadata(user)["metadata"]
        if meta["violations"] != ["1100", "1200", "1300"] or meta["end_time"] != "2000":
            print(f"✗ unexpected record: {meta}")
            return False

        print("✓ Exam lifecycle behaves as expected")
        return True
    except Exception as e:
        print(f"✗ Lifecycle check failed: {e}")
        return False


def check_gateway():
    print("Checking HTTP gateway...")
    user = os.urandom(32).hex()
    try:
        resp = requests.post(f"{WEB_URL}/api/add_violation",
                             json={"user": user, "timestamp": 5}, timeout=5)
        if resp.status_code != 200 or not resp.json().get("applied"):
            print(f"✗ Gateway add_violation returned {resp.status_code}")
            return False

        resp = requests.get(f"{WEB_URL}/api/violations/{user}", timeout=5)
        if resp.json().get("violations") != ["5", None, None]:
            print(f"✗ Gateway violations returned {resp.json()}")
            return False

        print("✓ Gateway is forwarding")
        return True
    except Exception as e:
        print(f"✗ Gateway check failed: {e}")
        return False


def main():
    print("=" * 50)
    print("EXAM PROCTORING LEDGER - SMOKE CHECK")
    print("=" * 50)

    checks = [check_server_connection, check_lifecycle, check_gateway]
    passed = sum(1 for check in checks if check())

    print(f"\n{passed}/{len(checks)} checks passed")
    return passed == len(checks)


if __name__ == "__main__":
    sys.exit(0 if main() else 1)
