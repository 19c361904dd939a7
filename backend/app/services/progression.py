"""
Progression Controller — match state machine over a BracketGraph.

    pending ──> ongoing ──> completed ──> disputed ──(resolve)──> completed
       │           │
       └───────────┴──> forfeited

Resolving a match writes the winner (and, in double elimination, the loser)
into the slots pre-computed by the bracket builder, then walks forward
through those links settling any match that can now resolve without play:
a bye, a withdrawn opponent, or both sides absent (void).
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from app.services.bracket_graph import (
    BRANCH_GRAND_FINAL,
    FORMAT_ROUND_ROBIN,
    SLOT_A,
    SLOT_B,
    SLOT_BYE,
    SLOT_TBD,
    STATUS_COMPLETED,
    STATUS_DISPUTED,
    STATUS_FORFEITED,
    STATUS_ONGOING,
    STATUS_PENDING,
    VALID_BEST_OF,
    BracketGraph,
    BracketMatch,
    Correction,
    SlotRef,
    other_slot,
    wins_needed,
)
from app.services.errors import InvalidScoreError, InvalidTransitionError, UnresolvedSlotError

logger = logging.getLogger(__name__)

RESET_MATCH_CODE = "GF-2"
FIRST_GRAND_FINAL_CODE = "GF-1"


def validate_score(best_of: int, score_a, score_b) -> str:
    """
    Validate a best-of score and return the winning slot.

    The winner must reach exactly ceil(best_of / 2); the loser must stay
    strictly below it.
    """
    if best_of not in VALID_BEST_OF:
        raise InvalidScoreError(f"Unsupported best-of value: {best_of}")
    for value in (score_a, score_b):
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidScoreError(f"Scores must be integers, got {value!r}")
        if value < 0:
            raise InvalidScoreError("Scores cannot be negative")
    if score_a == score_b:
        raise InvalidScoreError("Scores cannot be tied")
    need = wins_needed(best_of)
    high, low = max(score_a, score_b), min(score_a, score_b)
    if high != need:
        raise InvalidScoreError(f"Winner must have exactly {need} wins in a Bo{best_of}")
    if low >= need:
        raise InvalidScoreError(f"Loser must have fewer than {need} wins in a Bo{best_of}")
    return SLOT_A if score_a > score_b else SLOT_B


@dataclass
class TransitionReport:
    """What one state transition changed."""
    match_code: Optional[str] = None
    touched: List[str] = field(default_factory=list)
    forfeits: List[str] = field(default_factory=list)
    walkovers: List[str] = field(default_factory=list)
    voided: List[str] = field(default_factory=list)
    eliminated: List[int] = field(default_factory=list)
    reset_created: Optional[str] = None
    correction: Optional[Correction] = None
    stage_complete: bool = False

    def touch(self, code: str) -> None:
        if code not in self.touched:
            self.touched.append(code)


@dataclass
class ResultEntry:
    match_code: str
    score_a: int
    score_b: int


@dataclass
class BatchOutcome:
    match_code: str
    ok: bool
    error: Optional[str] = None
    report: Optional[TransitionReport] = None


class ProgressionController:
    """Applies transitions to one stage graph. Callers serialize access per tournament."""

    def __init__(self, graph: BracketGraph):
        self.graph = graph

    # ------------------------------------------------------------------
    # Public transitions
    # ------------------------------------------------------------------

    def start_match(self, code: str) -> TransitionReport:
        match = self.graph.get(code)
        if match.status != STATUS_PENDING:
            raise InvalidTransitionError(f"Match {code} is {match.status}, cannot start")
        self._require_playable(match)
        match.status = STATUS_ONGOING
        return self._finish(TransitionReport(match_code=code, touched=[code]))

    def apply_result(self, code: str, score_a: int, score_b: int) -> TransitionReport:
        match = self.graph.get(code)
        if not match.is_open:
            raise InvalidTransitionError(
                f"Match {code} is {match.status}; recorded results change only through dispute resolution"
            )
        self._require_playable(match)
        winner_slot = validate_score(match.best_of, score_a, score_b)

        match.score_a, match.score_b = score_a, score_b
        match.winner_id = match.slot_team(winner_slot)
        match.status = STATUS_COMPLETED
        logger.info("Match %s completed %s-%s, winner team %s", code, score_a, score_b, match.winner_id)

        report = TransitionReport(match_code=code, touched=[code])
        self._advance_from(match, report)
        return self._finish(report)

    def apply_results(self, entries: Iterable) -> List[BatchOutcome]:
        """Record several results; one bad entry never blocks the rest."""
        outcomes = []
        for entry in entries:
            if not isinstance(entry, ResultEntry):
                entry = ResultEntry(*entry)
            if entry.match_code not in self.graph:
                outcomes.append(BatchOutcome(entry.match_code, ok=False, error="Unknown match"))
                continue
            try:
                report = self.apply_result(entry.match_code, entry.score_a, entry.score_b)
            except (InvalidScoreError, InvalidTransitionError) as exc:
                logger.info("Batch entry %s rejected: %s", entry.match_code, exc)
                outcomes.append(BatchOutcome(entry.match_code, ok=False, error=str(exc)))
                continue
            outcomes.append(BatchOutcome(entry.match_code, ok=True, report=report))
        return outcomes

    def forfeit(self, code: str, winner_id: int) -> TransitionReport:
        match = self.graph.get(code)
        if not match.is_open:
            raise InvalidTransitionError(f"Match {code} is {match.status}, cannot forfeit")
        self._require_playable(match)
        winner_slot = match.slot_of(winner_id)
        if winner_slot is None:
            raise InvalidTransitionError(f"Team {winner_id} is not playing in match {code}")

        report = TransitionReport(match_code=code, touched=[code])
        self._award_forfeit(match, winner_slot, report)
        self._advance_from(match, report)
        return self._finish(report)

    def raise_dispute(self, code: str, reason: str) -> TransitionReport:
        match = self.graph.get(code)
        if match.status != STATUS_COMPLETED:
            raise InvalidTransitionError(f"Only completed matches can be disputed; {code} is {match.status}")
        match.status = STATUS_DISPUTED
        match.dispute_reason = reason
        logger.info("Match %s disputed: %s", code, reason)
        return self._finish(TransitionReport(match_code=code, touched=[code]))

    def resolve_dispute(
        self,
        code: str,
        notes: str,
        score_a: Optional[int] = None,
        score_b: Optional[int] = None,
        resolved_by: Optional[str] = None,
    ) -> TransitionReport:
        """
        Close a dispute, optionally overwriting the score. A changed winner is
        re-routed only while the downstream matches it fed are still undecided.
        """
        match = self.graph.get(code)
        if match.status != STATUS_DISPUTED:
            raise InvalidTransitionError(f"Match {code} is not disputed")
        report = TransitionReport(match_code=code, touched=[code])

        previous_winner = match.winner_id
        previous_score = (match.score_a, match.score_b)
        new_winner = previous_winner
        if score_a is not None or score_b is not None:
            if score_a is None or score_b is None:
                raise InvalidScoreError("Both scores are required to overwrite a result")
            winner_slot = validate_score(match.best_of, score_a, score_b)
            new_winner = match.slot_team(winner_slot)
            if new_winner != previous_winner:
                self._reroute(match, new_winner, report)
            match.score_a, match.score_b = score_a, score_b
            match.winner_id = new_winner

        match.status = STATUS_COMPLETED
        match.dispute_reason = None
        correction = Correction(
            match_code=code,
            previous_winner_id=previous_winner,
            new_winner_id=new_winner,
            previous_score=previous_score,
            new_score=(match.score_a, match.score_b),
            notes=notes,
            resolved_by=resolved_by,
        )
        self.graph.corrections.append(correction)
        report.correction = correction
        logger.info(
            "Dispute on %s resolved: winner %s -> %s, score %s -> %s",
            code, previous_winner, new_winner, previous_score, correction.new_score,
        )
        return self._finish(report)

    def withdraw(self, team_id: int) -> TransitionReport:
        """
        Withdraw a team: each of its open matches is forfeited to the opponent
        and the forfeit winners advance exactly as if they had won by play.
        A match still waiting on its other side turns the withdrawn slot into a
        bye so the opponent walks over once it arrives.
        """
        if team_id in self.graph.withdrawn_team_ids:
            raise InvalidTransitionError(f"Team {team_id} has already withdrawn")
        self.graph.withdrawn_team_ids.add(team_id)
        report = TransitionReport()
        logger.info("Team %s withdrawn from stage %s", team_id, self.graph.stage_index)

        for match in self.graph.matches_for_team(team_id, open_only=True):
            if match.code not in self.graph or not match.is_open or not match.involves(team_id):
                continue
            slot = match.slot_of(team_id)
            opponent_state = match.slot_state(other_slot(slot))
            report.touch(match.code)
            if opponent_state == SLOT_TBD:
                match.mark_bye(slot)
                match.is_walkover = True
                continue
            if opponent_state == SLOT_BYE:
                continue
            if self._settle(match, report):
                self._advance_from(match, report)

        if team_id not in report.eliminated:
            report.eliminated.append(team_id)
        return self._finish(report)

    def is_stage_complete(self) -> bool:
        return self.graph.is_complete()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _finish(self, report: TransitionReport) -> TransitionReport:
        report.stage_complete = self.graph.is_complete()
        return report

    def _require_playable(self, match: BracketMatch) -> None:
        if not match.is_playable:
            raise InvalidTransitionError(f"Match {match.code} is a walkover and is never played")
        if not match.is_ready:
            pending = SLOT_A if match.team_a_id is None else SLOT_B
            raise InvalidTransitionError(f"Match {match.code} is waiting on {match.placeholder(pending)}")

    def _is_absent(self, match: BracketMatch, slot: str) -> bool:
        if match.is_bye(slot):
            return True
        return match.slot_team(slot) in self.graph.withdrawn_team_ids

    def _award_forfeit(self, match: BracketMatch, winner_slot: str, report: TransitionReport) -> None:
        need = wins_needed(match.best_of)
        match.winner_id = match.slot_team(winner_slot)
        if winner_slot == SLOT_A:
            match.score_a, match.score_b = need, 0
        else:
            match.score_a, match.score_b = 0, need
        match.is_forfeit = True
        match.status = STATUS_FORFEITED
        report.forfeits.append(match.code)
        report.touch(match.code)
        logger.info("Match %s forfeited to team %s", match.code, match.winner_id)

    def _settle(self, match: BracketMatch, report: TransitionReport) -> bool:
        """Resolve a match that needs no play. Returns True when it resolved."""
        if not match.is_open:
            return False
        states = (match.slot_state(SLOT_A), match.slot_state(SLOT_B))
        if SLOT_TBD in states:
            if SLOT_BYE in states:
                match.is_walkover = True
            return False

        absent_a = self._is_absent(match, SLOT_A)
        absent_b = self._is_absent(match, SLOT_B)
        if not absent_a and not absent_b:
            return False

        report.touch(match.code)
        if absent_a and absent_b:
            match.winner_id = None
            match.is_forfeit = True
            match.status = STATUS_FORFEITED
            report.voided.append(match.code)
            logger.warning("Match %s void: neither side can play", match.code)
            return True

        present = SLOT_B if absent_a else SLOT_A
        if match.is_bye(other_slot(present)):
            match.winner_id = match.slot_team(present)
            match.is_walkover = True
            match.status = STATUS_FORFEITED
            report.walkovers.append(match.code)
            logger.debug("Match %s walkover for team %s", match.code, match.winner_id)
        else:
            self._award_forfeit(match, present, report)
        return True

    def _write_team(self, ref: SlotRef, team_id: int, report: TransitionReport) -> BracketMatch:
        dest = self.graph.resolve_link(ref)
        current = dest.slot_team(ref.slot)
        if current == team_id:
            return dest
        if current is not None or dest.is_bye(ref.slot):
            raise UnresolvedSlotError(
                f"Slot {ref.slot} of {dest.code} is already occupied ({dest.placeholder(ref.slot)})"
            )
        dest.set_slot(ref.slot, team_id)
        report.touch(dest.code)
        return dest

    def _write_bye(self, ref: SlotRef, report: TransitionReport) -> BracketMatch:
        dest = self.graph.resolve_link(ref)
        if dest.slot_team(ref.slot) is not None:
            raise UnresolvedSlotError(f"Slot {ref.slot} of {dest.code} is already occupied")
        dest.mark_bye(ref.slot)
        report.touch(dest.code)
        return dest

    def _route(self, match: BracketMatch, report: TransitionReport) -> List[BracketMatch]:
        """Write a resolved match's winner and loser into their destinations."""
        destinations = []
        winner, loser = match.winner_id, match.loser_id

        if match.winner_to is not None:
            if winner is None:
                destinations.append(self._write_bye(match.winner_to, report))
            else:
                destinations.append(self._write_team(match.winner_to, winner, report))
        elif not match.is_final and self.graph.format != FORMAT_ROUND_ROBIN:
            raise UnresolvedSlotError(f"Match {match.code} has no winner destination")

        if match.loser_to is not None:
            if loser is None or loser in self.graph.withdrawn_team_ids:
                destinations.append(self._write_bye(match.loser_to, report))
            else:
                destinations.append(self._write_team(match.loser_to, loser, report))
        elif loser is not None and self.graph.format != FORMAT_ROUND_ROBIN:
            report.eliminated.append(loser)

        if self._needs_reset(match):
            report.reset_created = self._create_reset(match).code
            report.touch(RESET_MATCH_CODE)
        return destinations

    def _advance_from(self, origin: BracketMatch, report: TransitionReport) -> None:
        """Breadth-first walk along forward links from a newly resolved match."""
        queue = deque([origin])
        while queue:
            match = queue.popleft()
            for dest in self._route(match, report):
                if self._settle(dest, report):
                    queue.append(dest)

    # --- grand final reset --------------------------------------------

    def _needs_reset(self, match: BracketMatch) -> bool:
        # A forfeited or walked-over GF-1 is the deciding final
        return (
            self.graph.allow_reset
            and match.code == FIRST_GRAND_FINAL_CODE
            and match.winner_id is not None
            and not match.is_forfeit
            and not match.is_walkover
            and match.winner_slot == SLOT_B
            and RESET_MATCH_CODE not in self.graph
        )

    def _create_reset(self, gf: BracketMatch) -> BracketMatch:
        reset = self.graph.add(BracketMatch(
            code=RESET_MATCH_CODE,
            branch=BRANCH_GRAND_FINAL,
            round_number=gf.round_number + 1,
            sequence=1,
            best_of=gf.best_of,
            team_a_id=gf.team_a_id,
            team_b_id=gf.team_b_id,
            is_final=True,
        ))
        logger.info("Losers-bracket champion won %s; bracket reset %s created", gf.code, reset.code)
        return reset

    # --- dispute re-routing -------------------------------------------

    def _reroute(self, match: BracketMatch, new_winner: int, report: TransitionReport) -> None:
        old_winner = match.winner_id
        old_loser = match.loser_id
        moves: List[Tuple[SlotRef, Optional[int], Optional[int]]] = []
        if match.winner_to is not None:
            moves.append((match.winner_to, old_winner, new_winner))
        if match.loser_to is not None:
            moves.append((match.loser_to, old_loser, old_winner))

        for ref, expected, _ in moves:
            dest = self.graph.resolve_link(ref)
            if dest.status != STATUS_PENDING or dest.slot_team(ref.slot) != expected:
                raise InvalidTransitionError(
                    f"Cannot change winner of {match.code}: downstream match {dest.code} is already decided"
                )

        if match.code == FIRST_GRAND_FINAL_CODE and RESET_MATCH_CODE in self.graph:
            reset = self.graph.get(RESET_MATCH_CODE)
            if reset.status != STATUS_PENDING:
                raise InvalidTransitionError(
                    f"Cannot change winner of {match.code}: {RESET_MATCH_CODE} has already started"
                )
            self.graph.remove(RESET_MATCH_CODE)
            report.touch(RESET_MATCH_CODE)
            logger.info("Bracket reset %s removed after correction of %s", RESET_MATCH_CODE, match.code)

        for ref, _, replacement in moves:
            dest = self.graph.resolve_link(ref)
            dest.set_slot(ref.slot, replacement)
            report.touch(dest.code)

        match.winner_id = new_winner
        if self._needs_reset(match):
            report.reset_created = self._create_reset(match).code
            report.touch(RESET_MATCH_CODE)
