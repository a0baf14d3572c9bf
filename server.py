#!/usr/bin/env python3
"""
Exam Proctoring Ledger - Exam Controller Server
Implements the exam lifecycle policy (start, violations with auto-kick, end)
over the metadata store and publishes it through an XML-RPC server
"""

import json
import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, Optional, Tuple
from xmlrpc.server import SimpleXMLRPCServer

import config
from metadata_store import (
    ExamMetadata, MetadataStore, UserId, parse_timestamp, parse_user_id
)

logger = logging.getLogger(__name__)

END_POLICIES = ("guarded", "permissive")


class ExamController:
    """Exam lifecycle policy for each user, stateless over a MetadataStore"""

    def __init__(self, store: MetadataStore = None, end_policy: str = "guarded",
                 event_log_path: Optional[str] = None):
        if end_policy not in END_POLICIES:
            raise ValueError(f"Unknown end policy {end_policy!r}, expected one of {END_POLICIES}")
        self.store = store if store is not None else MetadataStore()
        self.end_policy = end_policy
        self.event_log_path = event_log_path

        logger.info(f"Exam controller initialized (end policy: {end_policy})")

    def _log_event(self, event: str, data: Dict = None):
        """Log state transitions, mirrored to the audit file when configured"""
        timestamp = datetime.now().isoformat()
        logger.info(f"EVENT: {event} - {json.dumps(data)}")

        if self.event_log_path:
            # Audit failures are logged only, the transition is already stored
            try:
                with open(self.event_log_path, "a") as f:
                    f.write(f"{timestamp} {event}: {json.dumps(data)}\n")
            except OSError as e:
                logger.error(f"Failed to write audit event {event} to {self.event_log_path}: {e}")

    def set_start(self, user: UserId, start_time: int) -> bool:
        """Record the exam start. Overwrites any earlier start time."""
        self.store.update(user, lambda meta: replace(meta, start_time=start_time))
        self._log_event("exam_started", {"user": user.hex(), "start_time": start_time})
        return True

    def add_violation(self, user: UserId, violation_time: int) -> bool:
        """Log a violation in the first free slot.

        Returns False when all slots were already taken and the violation was
        dropped. The record is written back in both cases.
        """
        applied, _ = self.record_violation(user, violation_time)
        return applied

    def record_violation(self, user: UserId, violation_time: int) -> Tuple[bool, ExamMetadata]:
        """add_violation, also returning the record as stored by the same update"""
        recorded = []

        def transition(meta: ExamMetadata) -> ExamMetadata:
            updated = meta.with_violation(violation_time)
            recorded.append(updated.violation_count > meta.violation_count)
            return updated

        meta = self.store.update(user, transition)
        applied = recorded[0]

        self._log_event("violation_recorded" if applied else "violation_dropped", {
            "user": user.hex(),
            "violation_time": violation_time,
            "violations": meta.violation_count,
            "kicked": meta.kicked,
        })
        if applied and meta.kicked:
            logger.warning(f"User {user.hex()} kicked after {meta.violation_count} violations")
        return applied, meta

    def _end_allowed(self, meta: ExamMetadata, end_time: int) -> bool:
        if self.end_policy == "permissive":
            return True
        return meta.start_time is not None and end_time > meta.start_time

    def set_end(self, user: UserId, end_time: int) -> bool:
        """Record the exam end according to the configured end policy.

        Guarded: only after a start and strictly later than it; a rejected end
        writes nothing. Permissive: always written.
        """
        allowed = []

        def transition(meta: ExamMetadata) -> Optional[ExamMetadata]:
            allowed.append(self._end_allowed(meta, end_time))
            return replace(meta, end_time=end_time) if allowed[0] else None

        meta = self.store.update(user, transition)
        applied = allowed[0]

        self._log_event("exam_ended" if applied else "exam_end_rejected", {
            "user": user.hex(),
            "end_time": end_time,
            "start_time": meta.start_time,
            "policy": self.end_policy,
        })
        return applied

    def get_metadata(self, user: UserId) -> Optional[ExamMetadata]:
        return self.store.get(user)

    def get_start_time(self, user: UserId) -> Optional[int]:
        return self.store.get_or_default(user).start_time

    def get_end_time(self, user: UserId) -> Optional[int]:
        return self.store.get_or_default(user).end_time

    def get_violation_times(self, user: UserId) -> Tuple[Optional[int], ...]:
        return self.store.get_or_default(user).violations

    def is_kicked(self, user: UserId) -> bool:
        return self.store.get_or_default(user).kicked


class ProctorService:
    """XML-RPC facade: parses wire arguments and wraps results in status dicts"""

    def __init__(self, controller: ExamController):
        self.controller = controller

    def set_start(self, user: str, start_time) -> Dict:
        """Record exam start for a user"""
        try:
            uid, ts = parse_user_id(user), parse_timestamp(start_time)
            self.controller.set_start(uid, ts)
            return {"success": True, "applied": True, "message": "Start time recorded"}
        except Exception as e:
            logger.error(f"Error setting start for {user}: {e}")
            return {"success": False, "message": f"set_start failed: {str(e)}"}

    def add_violation(self, user: str, violation_time) -> Dict:
        """Record a violation for a user"""
        try:
            uid, ts = parse_user_id(user), parse_timestamp(violation_time)
            applied, meta = self.controller.record_violation(uid, ts)
            return {
                "success": True,
                "applied": applied,
                "kicked": meta.kicked,
                "message": "Violation recorded" if applied else "Violation log full, violation dropped",
            }
        except Exception as e:
            logger.error(f"Error adding violation for {user}: {e}")
            return {"success": False, "message": f"add_violation failed: {str(e)}"}

    def set_end(self, user: str, end_time) -> Dict:
        """Record exam end for a user"""
        try:
            uid, ts = parse_user_id(user), parse_timestamp(end_time)
            applied = self.controller.set_end(uid, ts)
            if applied:
                message = "End time recorded"
            else:
                message = "End time rejected: exam not started or end not after start"
            return {"success": True, "applied": applied, "message": message}
        except Exception as e:
            logger.error(f"Error setting end for {user}: {e}")
            return {"success": False, "message": f"set_end failed: {str(e)}"}

    def get_metadata(self, user: str) -> Dict:
        try:
            meta = self.controller.get_metadata(parse_user_id(user))
            return {"success": True, "metadata": meta.to_dict() if meta else None}
        except Exception as e:
            logger.error(f"Error getting metadata for {user}: {e}")
            return {"success": False, "message": str(e)}

    def get_start_time(self, user: str) -> Dict:
        try:
            meta = ExamMetadata(start_time=self.controller.get_start_time(parse_user_id(user)))
            return {"success": True, "start_time": meta.to_dict()["start_time"]}
        except Exception as e:
            logger.error(f"Error getting start time for {user}: {e}")
            return {"success": False, "message": str(e)}

    def get_end_time(self, user: str) -> Dict:
        try:
            meta = ExamMetadata(end_time=self.controller.get_end_time(parse_user_id(user)))
            return {"success": True, "end_time": meta.to_dict()["end_time"]}
        except Exception as e:
            logger.error(f"Error getting end time for {user}: {e}")
            return {"success": False, "message": str(e)}

    def get_violation_times(self, user: str) -> Dict:
        try:
            meta = ExamMetadata(violations=self.controller.get_violation_times(parse_user_id(user)))
            return {"success": True, "violations": meta.to_dict()["violations"]}
        except Exception as e:
            logger.error(f"Error getting violations for {user}: {e}")
            return {"success": False, "message": str(e)}

    def is_kicked(self, user: str) -> Dict:
        try:
            return {"success": True, "kicked": self.controller.is_kicked(parse_user_id(user))}
        except Exception as e:
            logger.error(f"Error getting kicked state for {user}: {e}")
            return {"success": False, "message": str(e)}

    def get_status(self) -> Dict:
        """Health probe"""
        return {
            "success": True,
            "end_policy": self.controller.end_policy,
            "users": len(self.controller.store),
        }


def create_server(port: int = config.PORT, end_policy: str = config.END_POLICY,
                  host: str = config.HOST, event_log_path: Optional[str] = config.EVENT_LOG_PATH):
    """Create the XML-RPC server"""
    controller = ExamController(end_policy=end_policy, event_log_path=event_log_path)
    service = ProctorService(controller)

    try:
        server = SimpleXMLRPCServer((host, port), allow_none=True, logRequests=False)
        server.register_introspection_functions()

        for name in ("set_start", "add_violation", "set_end", "get_metadata",
                     "get_start_time", "get_end_time", "get_violation_times",
                     "is_kicked", "get_status"):
            server.register_function(getattr(service, name), name)

        logger.info(f"XML-RPC Server starting on port {port} (end policy: {end_policy})")
        return server, service
    except Exception as e:
        logger.error(f"Failed to create server on port {port}: {e}")
        raise


if __name__ == "__main__":
    import sys

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(config.LOG_FILE),
            logging.StreamHandler()
        ]
    )

    port = int(sys.argv[1]) if len(sys.argv) > 1 else config.PORT
    end_policy = sys.argv[2] if len(sys.argv) > 2 else config.END_POLICY

    try:
        server, service = create_server(port, end_policy)

        try:
            server.serve_forever()
        except KeyboardInterrupt:
            logger.info("Server shutting down...")
            server.server_close()
    except Exception as e:
        logger.error(f"Failed to start server: {e}")
        sys.exit(1)
