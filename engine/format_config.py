"""
engine/format_config.py
=======================

Single source of truth for all format-specific parameters of a scored match.

Every engine component that has a format-sensitive value reads from a
FormatConfig instance rather than hardcoding T20 constants.  Adding a new
format (e.g. T10, The Hundred-style 20-over variants) requires only a new
entry in FORMAT_REGISTRY.

Usage
-----
    from engine.format_config import get_format

    fmt = get_format("T20")               # 20 overs, 10 wickets
    fmt = get_format("T20", overs=8)      # rain-shortened / friendly match
    fmt.legal_balls_limit                 # 48
    fmt.quota_enabled                     # False (no per-bowler quota)
"""

import re
from dataclasses import dataclass, replace
from typing import Dict, Optional


# ---------------------------------------------------------------------------
# FormatConfig
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FormatConfig:
    """
    Complete parameterisation of a limited-overs format.

    Attributes
    ----------
    name                    : canonical format name ("T10", "T20", "ListA")
    overs                   : overs per innings
    max_wickets             : wickets that end an innings (all out)
    balls_per_over          : legal deliveries per over
    max_bowler_overs        : per-bowler quota per innings, None = no quota
    allow_consecutive_overs : whether a bowler may bowl back-to-back overs
    """
    name: str
    overs: int
    max_wickets: int = 10
    balls_per_over: int = 6
    max_bowler_overs: Optional[int] = None
    allow_consecutive_overs: bool = False

    @property
    def legal_balls_limit(self) -> int:
        return self.overs * self.balls_per_over

    @property
    def quota_enabled(self) -> bool:
        return self.max_bowler_overs is not None and self.max_bowler_overs > 0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "overs": self.overs,
            "max_wickets": self.max_wickets,
            "balls_per_over": self.balls_per_over,
            "max_bowler_overs": self.max_bowler_overs,
            "allow_consecutive_overs": self.allow_consecutive_overs,
        }

    @staticmethod
    def from_dict(data: dict) -> "FormatConfig":
        return FormatConfig(
            name=data.get("name", "T20"),
            overs=int(data.get("overs", 20)),
            max_wickets=int(data.get("max_wickets", 10)),
            balls_per_over=int(data.get("balls_per_over", 6)),
            max_bowler_overs=data.get("max_bowler_overs"),
            allow_consecutive_overs=bool(data.get("allow_consecutive_overs", False)),
        )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

# Bowling quotas (2 / 4 / 10 overs) are intentionally left disabled: local
# matches scored with this app let captains bowl anyone for any number of
# overs.  Set max_bowler_overs in config.yaml to switch the rule back on.
FORMAT_REGISTRY: Dict[str, FormatConfig] = {
    "T10": FormatConfig(name="T10", overs=10),
    "T20": FormatConfig(name="T20", overs=20),
    "ListA": FormatConfig(name="ListA", overs=50),
}

DEFAULT_FORMAT = "T20"


def get_format(name: Optional[str] = None,
               overs: Optional[int] = None,
               max_bowler_overs: Optional[int] = None) -> FormatConfig:
    """
    Return the FormatConfig for *name* (T20 when unknown or empty), with an
    optional overs-per-innings override and bowling quota.
    """
    fmt = FORMAT_REGISTRY.get((name or "").strip(), FORMAT_REGISTRY[DEFAULT_FORMAT])
    if overs is not None:
        overs = int(overs)
        if overs <= 0:
            raise ValueError(f"overs must be positive, got {overs}")
        fmt = replace(fmt, overs=overs)
    if max_bowler_overs is not None:
        fmt = replace(fmt, max_bowler_overs=int(max_bowler_overs) or None)
    return fmt


def overs_from_match_type(match_type: Optional[str], default: int = 20) -> int:
    """Extract the overs limit from free text such as "20 Overs" or "T10"."""
    digits = re.sub(r"[^\d]", "", match_type or "")
    if not digits:
        return default
    value = int(digits)
    return value if value > 0 else default
