"""Canonical enum values for leads and calls."""

from __future__ import annotations

import enum


class LeadSource(str, enum.Enum):
    WEBSITE = "website"
    REFERRAL = "referral"
    SOCIAL = "social"
    DIRECT = "direct"
    OTHER = "other"


class LeadStatus(str, enum.Enum):
    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    PROPOSAL = "proposal"
    CONVERTED = "converted"
    LOST = "lost"


class CallStatus(str, enum.Enum):
    CONNECTED = "connected"
    NOT_CONNECTED = "not_connected"


class ConnectedResponse(str, enum.Enum):
    DISCUSSED = "discussed"
    CALLBACK = "callback"
    INTERESTED = "interested"


class NotConnectedReason(str, enum.Enum):
    BUSY = "busy"
    RNR = "rnr"
    SWITCHED_OFF = "switched_off"
