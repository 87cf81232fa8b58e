"""Status lifecycles for discovered frameworks, regulatory updates and generated controls.

Each lifecycle is an allowed-transition table. ``ensure_transition`` raises
ConflictError for any transition not listed.
"""

from aumos_compliance_learning.errors import ConflictError

DISCOVERED_FRAMEWORK_TRANSITIONS: dict[str, frozenset[str]] = {
    "discovered": frozenset({"analyzing", "generating", "active", "rejected"}),
    "analyzing": frozenset({"generating", "active", "rejected"}),
    "generating": frozenset({"active", "rejected"}),
    "active": frozenset(),
    "rejected": frozenset(),
}

REGULATORY_UPDATE_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"analyzed", "implementing", "implemented", "rejected", "archived"}),
    "analyzed": frozenset({"implementing", "implemented", "rejected", "archived"}),
    "implementing": frozenset({"implemented", "rejected", "archived"}),
    "implemented": frozenset({"archived"}),
    "rejected": frozenset({"archived"}),
    "archived": frozenset(),
}

GENERATED_CONTROL_TRANSITIONS: dict[str, frozenset[str]] = {
    "generated": frozenset({"pending_review", "approved", "rejected"}),
    "pending_review": frozenset({"approved", "rejected"}),
    "approved": frozenset({"implemented", "rejected"}),
    "rejected": frozenset(),
    "implemented": frozenset(),
}


def can_transition(table: dict[str, frozenset[str]], current: str, target: str) -> bool:
    """Return True when ``current → target`` is allowed by ``table``."""
    return target in table.get(current, frozenset())


def ensure_transition(
    table: dict[str, frozenset[str]],
    current: str,
    target: str,
    resource: str,
) -> None:
    """Raise ConflictError unless ``current → target`` is allowed.

    Args:
        table: Allowed-transition table.
        current: Current status.
        target: Requested status.
        resource: Resource name for the error message.

    Raises:
        ConflictError: If the transition is not allowed.
    """
    if target not in table:
        raise ConflictError(f"Unknown {resource} status: {target}")
    if not can_transition(table, current, target):
        raise ConflictError(f"{resource} cannot move from '{current}' to '{target}'")
