"""Lead status progression driven by call outcomes.

Forward path: new -> contacted -> qualified -> proposal -> converted, with lost
reachable from any open stage. A recorded call can only move a lead forward:
any call on a new lead marks it contacted, and an interested response on a
new or contacted lead qualifies it. Everything else leaves the status alone.
"""

from __future__ import annotations

from dataclasses import dataclass

from callbook.crm.enums import CallStatus, ConnectedResponse, LeadStatus, NotConnectedReason


@dataclass(frozen=True, slots=True)
class Connected:
    response: ConnectedResponse

    @property
    def status(self) -> CallStatus:
        return CallStatus.CONNECTED


@dataclass(frozen=True, slots=True)
class NotConnected:
    reason: NotConnectedReason

    @property
    def status(self) -> CallStatus:
        return CallStatus.NOT_CONNECTED


CallOutcome = Connected | NotConnected

PIPELINE_ORDER: tuple[LeadStatus, ...] = (
    LeadStatus.NEW,
    LeadStatus.CONTACTED,
    LeadStatus.QUALIFIED,
    LeadStatus.PROPOSAL,
    LeadStatus.CONVERTED,
)
TERMINAL_STATUSES = frozenset({LeadStatus.CONVERTED, LeadStatus.LOST})
_QUALIFIABLE = frozenset({LeadStatus.NEW, LeadStatus.CONTACTED})


def is_terminal(status: LeadStatus) -> bool:
    return status in TERMINAL_STATUSES


def stage_rank(status: LeadStatus) -> int:
    """Position on the forward path; lost sorts after every open stage."""
    if status is LeadStatus.LOST:
        return len(PIPELINE_ORDER)
    return PIPELINE_ORDER.index(status)


def next_status(current: LeadStatus, outcome: CallOutcome) -> LeadStatus:
    if isinstance(outcome, Connected) and outcome.response is ConnectedResponse.INTERESTED and current in _QUALIFIABLE:
        return LeadStatus.QUALIFIED
    if current is LeadStatus.NEW:
        return LeadStatus.CONTACTED
    return current
