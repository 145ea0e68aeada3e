"""Document keys of the shared store, one function per document family."""

ALERTS_SUMMARY_KEY = "alerts/summary"


def _code(facility: str) -> str:
    return facility.strip().lower()


def movements_key(facility: str) -> str:
    return f"ledger/{_code(facility)}/movements"


def master_key(facility: str) -> str:
    return f"ledger/{_code(facility)}/master"


def access_key(facility: str) -> str:
    return f"ledger/{_code(facility)}/access"


def audit_key(facility: str) -> str:
    return f"ledger/{_code(facility)}/audit"
