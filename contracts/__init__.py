"""
POP3 Client Contract Index
==========================

AUTHORITY: This file is the SINGLE authoritative entrypoint for all
client contracts. Import from here, not from individual contract files.
"""

from contracts.pop3_protocol_contract import (
    # Test Case Index
    TEST_CASES,
    AuthFailedError,
    BatchContract,
    BiosecretDeniedError,
    BiosecretNotFoundError,
    ConnectionClosedError,
    ConnectionFailedError,
    FilterContract,
    FilteredOutError,
    FilterMissingError,
    Message,
    NotConnectedError,
    Outcome,
    ParseError,
    # Error Types
    POP3MCPError,
    ProtocolError,
    RetrievalContract,
    RetrievalError,
    # Contracts (Protocols)
    SessionContract,
    # Domain Types
    SessionState,
    SessionStatus,
    ValidationError,
)

__all__ = [
    # Domain Types
    "SessionState",
    "Outcome",
    "Message",
    "SessionStatus",
    # Error Types
    "POP3MCPError",
    "BiosecretDeniedError",
    "BiosecretNotFoundError",
    "ValidationError",
    "ConnectionFailedError",
    "ProtocolError",
    "NotConnectedError",
    "ConnectionClosedError",
    "AuthFailedError",
    "RetrievalError",
    "ParseError",
    "FilteredOutError",
    "FilterMissingError",
    # Contracts
    "SessionContract",
    "RetrievalContract",
    "FilterContract",
    "BatchContract",
    # Test Traceability
    "TEST_CASES",
    # Functions
    "audit_contract_coverage",
]


def audit_contract_coverage() -> dict:
    """
    Audit which contract clauses have test coverage.

    Returns dict with:
    - covered: clauses with at least one test
    - uncovered: clauses with no tests
    - test_count: total tests defined
    """
    covered_clauses = set()
    for test_name, test_info in TEST_CASES.items():
        for clause in test_info.get("enforces", []):
            covered_clauses.add(clause)

    all_clauses = set()

    # Session clauses
    all_clauses.update(
        [
            "PRE-SESSION-01",
            "PRE-SESSION-02",
            "POST-SESSION-01",
            "POST-SESSION-02",
            "POST-SESSION-03",
            "POST-SESSION-04",
            "INV-SESSION-01",
            "INV-SESSION-02",
            "INV-SESSION-03",
            "INV-SESSION-04",
            "INV-SESSION-05",
            "ERRORS: VALIDATION_FAILED",
            "ERRORS: CONNECTION_FAILED",
            "ERRORS: PROTOCOL_ERROR",
            "ERRORS: NOT_CONNECTED",
            "ERRORS: AUTH_FAILED",
        ]
    )

    # Retrieval clauses
    all_clauses.update(
        [
            "PRE-RETR-01",
            "PRE-RETR-02",
            "POST-RETR-01",
            "POST-RETR-02",
            "POST-RETR-03",
            "INV-RETR-01",
            "INV-RETR-02",
            "INV-RETR-03",
            "INV-RETR-04",
            "INV-RETR-05",
            "INV-RETR-06",
            "ERRORS: RETRIEVE_FAILED",
            "ERRORS: PARSE_FAILED",
            "ERRORS: FILTERED_OUT",
        ]
    )

    # Filter clauses
    all_clauses.update(
        [
            "PRE-FILTER-01",
            "POST-FILTER-01",
            "POST-FILTER-02",
            "POST-FILTER-03",
            "INV-FILTER-01",
            "INV-FILTER-02",
            "INV-FILTER-03",
        ]
    )

    # Batch clauses
    all_clauses.update(
        [
            "PRE-BATCH-01",
            "PRE-BATCH-02",
            "POST-BATCH-01",
            "POST-BATCH-02",
            "POST-BATCH-03",
            "INV-BATCH-01",
            "INV-BATCH-02",
            "ERRORS: FILTER_MISSING",
        ]
    )

    uncovered = all_clauses - covered_clauses

    return {
        "covered": sorted(covered_clauses),
        "uncovered": sorted(uncovered),
        "test_count": len(TEST_CASES),
        "coverage_pct": round(len(covered_clauses) / len(all_clauses) * 100, 1),
    }
