from __future__ import annotations

import re
from typing import Optional

from harness_errors import UndeterminedOutcome

WIN, LOSS, UNDETERMINED = "win", "loss", "undetermined"

# Our bot is always P1 and plays the O symbol
DECLARED_WIN = re.compile(r"(Player1.*won|P1.*won)", re.IGNORECASE)
SCORE_LINE = {
    "O": re.compile(r"== O fin: (\d+)"),
    "X": re.compile(r"== X fin: (\d+)"),
}


def final_score(raw: str, symbol: str) -> Optional[int]:
    found = SCORE_LINE[symbol].findall(raw)
    if not found:
        return None
    return int(found[-1])


def classify(raw: str) -> str:
    """Return WIN, LOSS or UNDETERMINED for one match's combined output.

    An explicit "Player1 ... won" line wins outright. Otherwise the final
    O/X scores decide, with ties counted as losses. Without either signal the
    result is UNDETERMINED.
    """
    if DECLARED_WIN.search(raw):
        return WIN
    ours = final_score(raw, "O")
    theirs = final_score(raw, "X")
    if ours is None or theirs is None:
        return UNDETERMINED
    return WIN if ours > theirs else LOSS


def decide(raw: str) -> str:
    result = classify(raw)
    if result == UNDETERMINED:
        raise UndeterminedOutcome(raw)
    return result
