"""
Group selectors.

A group id is only unique inside its rundown, so the panel sees every group
under a composed selector ``<rundownId>|||<groupId>``.  Splitting happens at
the first separator, so a rundown id may neither contain the separator nor
end in ``|``; group ids may not contain the separator.
"""

from .errors import IdentifierError

SEPARATOR = "|||"
RUNDOWN_SUFFIX = ".rundown.json"


def check_rundown_id(rundown_id: str):
    if SEPARATOR in rundown_id or rundown_id.endswith("|"):
        raise IdentifierError(f"rundown id {rundown_id!r} can't be used in a selector")


def check_group_id(group_id: str):
    if SEPARATOR in group_id:
        raise IdentifierError(f"group id {group_id!r} contains {SEPARATOR!r}")


def compose(rundown_id: str, group_id: str) -> str:
    """Build the panel selector for a group."""
    check_rundown_id(rundown_id)
    check_group_id(group_id)
    return f"{rundown_id}{SEPARATOR}{group_id}"


def decompose(selector: str) -> tuple[str, str]:
    """Split a selector into ``(rundown_id, group_id)`` at the first separator."""
    rundown_id, sep, group_id = selector.partition(SEPARATOR)
    if not sep:
        raise IdentifierError(f"selector {selector!r} has no {SEPARATOR!r}")
    return rundown_id, group_id


def display_rundown_name(rundown_id: str) -> str:
    if rundown_id.endswith(RUNDOWN_SUFFIX):
        return rundown_id[: -len(RUNDOWN_SUFFIX)]
    return rundown_id
