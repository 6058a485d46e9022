# backend/cases.py

from typing import Any, Dict, Iterable, List, Optional

from models import CaseFile, Rubric

# Each entry here is one incident case in the game.
# Fields:
# - difficulty: "junior", "mid", "senior" or "principal" (drives the score multiplier)
# - clues: evidence in reveal order; the first two are visible from the start
# - clue hints: optional nudges the player can open (each distinct one costs points)
# - rubric: answer key used by both evaluation phases

INCIDENT_CASES: List[Dict[str, Any]] = [
    {
        "id": "ghost-users-problem",
        "title": "The Ghost Users Problem",
        "subtitle": "Friend lists show offline users as online",
        "difficulty": "junior",
        "category": "caching",
        "clues": [
            {"id": "1", "title": "Presence Service Code", "type": "code"},
            {"id": "2", "title": "Session Service Integration", "type": "code"},
            {"id": "3", "title": "Server Logs", "type": "logs",
             "hint": "What happened to those 2,847 sessions?"},
            {"id": "4", "title": "Redis Presence Data", "type": "metrics"},
            {"id": "5", "title": "Client Behavior", "type": "testimony"},
            {"id": "6", "title": "Monitoring Dashboard", "type": "metrics",
             "hint": "Why would session.ended be less than session.created?"},
        ],
        "rubric": {
            "diagnosis_phrase": (
                "Presence status is never cleaned up when sessions end abnormally "
                "(crashes, network loss, server failures)"
            ),
            "keywords": [
                "cleanup", "abnormal", "crash", "disconnect", "heartbeat",
                "timeout", "expire", "ttl", "graceful", "ungraceful",
            ],
            "solution_description": (
                "The presence system only marks users offline when endSession() is called "
                "explicitly. Client crashes, lost connections, server crashes and force-quits "
                "never call it, so those users stay 'online' in Redis forever and the ghost "
                "entries accumulate day after day."
            ),
            "example_fix_descriptions": [
                "Use TTL-based presence keys refreshed by a heartbeat",
                "Send a client-side heartbeat so liveness is detected without logout",
                "Run a background cleanup job that expires stale presence entries",
            ],
        },
        "prevention": [
            "Never rely solely on explicit cleanup calls for ephemeral state",
            "Use TTL/expiry for any 'session' or 'presence' type data",
            "Test abnormal termination scenarios (kill -9, network disconnect)",
        ],
    },
    {
        "id": "database-disappearing-act",
        "title": "The Database Disappearing Act",
        "subtitle": "Users vanish mid-session, but the database seems fine",
        "difficulty": "mid",
        "category": "database",
        "clues": [
            {"id": "1", "title": "Error Logs", "type": "logs",
             "hint": "Notice the pattern in the error messages..."},
            {"id": "2", "title": "Database Metrics", "type": "metrics",
             "hint": "One of these numbers is at its limit..."},
            {"id": "3", "title": "Application Config", "type": "config"},
            {"id": "4", "title": "Session Service Code", "type": "code",
             "hint": "Compare the connection lifecycle to the pool config..."},
            {"id": "5", "title": "Ops Engineer Testimony", "type": "testimony"},
            {"id": "6", "title": "Connection Tracking Query", "type": "metrics",
             "hint": "If 88 connections are idle, why can't new requests use them?"},
        ],
        "rubric": {
            "diagnosis_phrase": "Connection pool exhaustion due to unreleased connections",
            "keywords": [
                "connection pool", "pool exhaustion", "connection leak",
                "unreleased connection", "connection not released", "pool full",
                "getConnection", "release",
            ],
            "solution_description": (
                "SessionService.updateSession() acquires a pooled database connection and "
                "never releases it. Connections leak throughout the day until the pool is "
                "full; new requests wait 30 seconds for a connection and time out. Restarts "
                "only help because they recreate the pool."
            ),
            "example_fix_descriptions": [
                "Release the connection in a finally block after every query",
                "Wrap connection use in a helper that always returns it to the pool",
            ],
        },
        "prevention": [
            "Always use try/finally or a wrapper pattern for connection management",
            "Set up monitoring alerts for pool utilization > 80%",
            "Implement connection leak detection in development/staging",
        ],
    },
    {
        "id": "kafka-consumer-lag",
        "title": "The Kafka Consumer Catastrophe",
        "subtitle": "Messages pile up but consumers appear healthy",
        "difficulty": "senior",
        "category": "distributed",
        "clues": [
            {"id": "1", "title": "Consumer Lag Dashboard", "type": "metrics",
             "hint": "Message throughput stayed flat even after scaling..."},
            {"id": "2", "title": "Topic Configuration", "type": "config",
             "hint": "Count the partitions and count the effective consumers..."},
            {"id": "3", "title": "Consumer Group Details", "type": "logs",
             "hint": "Only 10 consumer IDs despite 30 pods..."},
            {"id": "4", "title": "DevOps Team Testimony", "type": "testimony",
             "hint": "Why would a consumer join the group but receive nothing?"},
            {"id": "5", "title": "Kafka Consumer Architecture Doc", "type": "config",
             "hint": "Compare your partition count to your consumer count..."},
            {"id": "6", "title": "Order Message Distribution", "type": "metrics",
             "hint": "Even distribution means no partition can be processed faster than others"},
        ],
        "rubric": {
            "diagnosis_phrase": "Consumer count exceeds partition count; extra consumers are idle",
            "keywords": [
                "partition", "consumer", "idle", "kafka", "consumer group",
                "partition count", "scaling", "throughput", "lag",
                "more consumers than partitions",
            ],
            "solution_description": (
                "The orders topic has 10 partitions and each partition is consumed by only "
                "one member of a consumer group. Scaling from 10 to 30 consumers left 20 of "
                "them with no partition assigned, so throughput stayed capped at 10-way "
                "parallelism."
            ),
            "example_fix_descriptions": [
                "Add partitions to the topic, then scale consumers to match",
                "Cap the consumer autoscaler at the partition count",
                "Process messages concurrently within each partition",
            ],
        },
        "prevention": [
            "Set partition count based on expected maximum throughput needs",
            "Rule of thumb: partitions >= max expected consumers",
            "Monitor 'idle consumers' metric (consumers with 0 partitions)",
        ],
    },
    {
        "id": "saga-compensation-failure",
        "title": "The Saga Compensation Nightmare",
        "subtitle": "Refunds double, orders vanish, inventory drifts",
        "difficulty": "principal",
        "category": "distributed",
        "clues": [
            {"id": "1", "title": "Saga Orchestrator Code", "type": "code",
             "hint": "The compensation runs all steps regardless of which ones actually succeeded"},
            {"id": "2", "title": "Saga State During Incident", "type": "logs",
             "hint": "The saga doesnt track which steps succeeded before compensating"},
            {"id": "3", "title": "Compensation Without State Tracking", "type": "code",
             "hint": "Compensation doesnt know what to compensate and swallows errors"},
            {"id": "4", "title": "Missing Idempotency", "type": "code",
             "hint": "No idempotency keys means retries create duplicates"},
            {"id": "5", "title": "Saga Pattern Best Practices (Violated)", "type": "config"},
            {"id": "6", "title": "Order State Inconsistencies Found", "type": "metrics",
             "hint": "Massive inconsistencies across all dimensions - charges, orders, inventory"},
        ],
        "rubric": {
            "diagnosis_phrase": (
                "Saga implementation lacked state tracking, idempotency, proper compensation "
                "logic, and failure recovery mechanisms"
            ),
            "keywords": [
                "saga", "compensation", "distributed transaction", "state machine",
                "idempotency", "outbox pattern", "dead letter queue", "reconciliation",
                "eventual consistency", "choreography", "orchestration",
            ],
            "solution_description": (
                "The saga never recorded which steps completed, so compensation undid every "
                "step blindly. No idempotency keys meant retries double-charged, compensation "
                "errors were swallowed, events were not written through a transactional "
                "outbox, and nothing reconciled stuck sagas."
            ),
            "example_fix_descriptions": [
                "Model the saga as a persisted state machine and compensate only completed steps",
                "Use idempotency keys for every saga operation",
                "Publish saga events through a transactional outbox",
                "Run a background reconciliation job and dead-letter failed compensations",
            ],
        },
        "prevention": [
            "Implement saga as explicit state machine with persistent state",
            "Use idempotency keys for ALL saga operations to handle retries safely",
            "Queue failed compensations for retry instead of swallowing errors",
        ],
    },
]


class UnknownCaseError(KeyError):
    pass


class CaseCatalog:
    """Read-only lookup over authored cases."""

    def __init__(self, cases: Optional[Iterable[Dict[str, Any]]] = None):
        data = INCIDENT_CASES if cases is None else cases
        self._cases: Dict[str, CaseFile] = {}
        for raw in data:
            case = raw if isinstance(raw, CaseFile) else CaseFile.model_validate(raw)
            self._cases[case.id] = case

    def __contains__(self, case_id: str) -> bool:
        return case_id in self._cases

    def __len__(self) -> int:
        return len(self._cases)

    def get_case(self, case_id: str) -> CaseFile:
        try:
            return self._cases[case_id]
        except KeyError:
            raise UnknownCaseError(case_id) from None

    def get_rubric(self, case_id: str) -> Rubric:
        return self.get_case(case_id).rubric

    def get_clue_count(self, case_id: str) -> int:
        return self.get_case(case_id).total_clues

    def get_difficulty(self, case_id: str) -> str:
        return self.get_case(case_id).difficulty

    def list_cases(self) -> List[CaseFile]:
        return list(self._cases.values())
