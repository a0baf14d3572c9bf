#!/usr/bin/env python3
"""
Exam Proctoring Ledger - Startup Script
Starts the XML-RPC server and the Flask gateway, stops both on Ctrl+C
"""

import subprocess
import time
import sys
import os
import signal
import xmlrpc.client

import requests

import config


class SystemManager:
    """Manages starting and stopping the system components"""

    def __init__(self):
        self.processes = []
        self.running = False

    def start_component(self, name, command_args, cwd=None):
        """Start a component using the current Python interpreter"""
        try:
            print(f"Starting {name}...")
            process = subprocess.Popen(
                [sys.executable] + list(command_args),
                cwd=cwd,
                preexec_fn=os.setsid if os.name != 'nt' else None
            )
            self.processes.append((name, process))
            print(f"✓ {name} started (PID: {process.pid})")
            return process
        except Exception as e:
            print(f"✗ Failed to start {name}: {e}")
            return None

    def start_all(self, end_policy=config.END_POLICY):
        print("=" * 60)
        print("EXAM PROCTORING LEDGER - STARTUP")
        print("=" * 60)

        self.start_component("Proctoring Server", ["server.py", str(config.PORT), end_policy])
        self.start_component("Flask Gateway", ["app.py"], cwd="frontend")

        print("\nPerforming health checks...")
        self.wait_for_xmlrpc(config.SERVER_URL, name="Proctoring Server")
        self.wait_for_http(f"http://127.0.0.1:{config.WEB_PORT}/api/status")

        self.running = True
        print("\n" + "=" * 60)
        print("SYSTEM STARTUP COMPLETE")
        print(f"Gateway: http://localhost:{config.WEB_PORT}/api/status")
        print("Press Ctrl+C to stop all components")
        print("=" * 60)

    def stop_all(self):
        print("\nStopping system components...")
        for name, process in self.processes:
            try:
                if os.name == 'nt':
                    process.terminate()
                else:
                    os.killpg(os.getpgid(process.pid), signal.SIGTERM)
                process.wait(timeout=5)
                print(f"✓ {name} stopped")
            except subprocess.TimeoutExpired:
                print(f"Force killing {name}...")
                process.kill()
            except Exception as e:
                print(f"✗ Error stopping {name}: {e}")

        self.processes = []
        self.running = False

    def wait_for_xmlrpc(self, url, name, retries=20, delay=0.5):
        """Wait until an XML-RPC endpoint answers get_status"""
        proxy = xmlrpc.client.ServerProxy(url, allow_none=True)
        for _ in range(retries):
            try:
                if proxy.get_status().get("success"):
                    print(f"✓ {name} is healthy at {url}")
                    return True
            except Exception:
                pass
            time.sleep(delay)
        print(f"✗ {name} not healthy at {url}")
        return False

    def wait_for_http(self, url, retries=40, delay=0.5):
        for _ in range(retries):
            try:
                resp = requests.get(url, timeout=2)
                if resp.status_code == 200:
                    print(f"✓ Gateway responding at {url}")
                    return True
            except requests.RequestException:
                pass
            time.sleep(delay)
        print(f"✗ Gateway not responding at {url}")
        return False


def main():
    manager = SystemManager()

    def signal_handler(signum, frame):
        print("\nReceived interrupt signal...")
        manager.stop_all()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    if not os.path.exists("server.py"):
        print("Error: Please run this script from the project root directory")
        sys.exit(1)

    end_policy = sys.argv[1] if len(sys.argv) > 1 else config.END_POLICY

    try:
        manager.start_all(end_policy)
        while manager.running:
            for name, process in manager.processes:
                if process.poll() is not None:
                    print(f"⚠ {name} has stopped unexpectedly")
                    manager.running = False
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        manager.stop_all()


if __name__ == "__main__":
    main()
