"""
ShowSet Workflow: Engine (orchestrator).

One public method per action. Each takes a ``ShowSet`` snapshot plus the
acting ``Actor`` and returns a ``TransitionResult`` holding the new
snapshot and the ordered effects the caller must persist atomically.
The engine performs no I/O and never mutates its input: any rejection is
raised as a ``WorkflowError`` before a result is built.

Checks run in a fixed order for every action:
    lock -> role capability -> transition rule -> cascade -> version policy

Usage:
    from unisync.workflow import WorkflowEngine, Actor

    engine = WorkflowEngine(get_variant("standard"))
    result = engine.start(showset, Actor("u-1", "2d_drafter"), "drawing2d")
    save(result.showset, result.effects)
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Iterable

from unisync.core.exceptions import (
    ForbiddenError,
    InvalidStatusForRoleError,
    InvalidTransitionError,
    MissingRevisionNoteError,
    WorkflowError,
)
from unisync.workflow import lock as lock_guard
from unisync.workflow.capabilities import (
    APPROVAL_STATUSES,
    RoleCapability,
    can_edit_versions,
    is_admin,
    review_authority,
)
from unisync.workflow.cascade import (
    apply_invalidation,
    downstream_needs_revision,
    invalidation_targets,
)
from unisync.workflow.constants import REVIEW_STATUSES, StageName, StageStatus
from unisync.workflow.snapshot import (
    Actor,
    Effect,
    ShowSet,
    TransitionResult,
    WorkingContext,
    utcnow,
)
from unisync.workflow.transitions import START_SOURCES, StageTransitionRule
from unisync.workflow.variants import STANDARD, WorkflowVariant
from unisync.workflow.versioning import auto_increment, manual_set

logger = logging.getLogger(__name__)

S = StageStatus

# Placeholder note for dry-running rejections
_DRY_RUN_NOTE = "dry run"


def _status_change(stage: StageName, before: StageStatus, after: StageStatus, **details) -> Effect:
    return Effect(
        kind="status_change",
        stage=stage,
        details={"from": before.value, "to": after.value, **details},
    )


def _version_effect(kind: str, stage: StageName | None, version_type, version: int, entry) -> Effect:
    return Effect(
        kind=kind,
        stage=stage,
        details={
            "versionType": version_type.value,
            "version": version,
            "trigger": entry.trigger,
            "entry": entry.to_dict(),
        },
    )


def _require_note(note: str | None, stage: StageName | None = None) -> str:
    if not note or not note.strip():
        raise MissingRevisionNoteError(
            "A revision note is required",
            stage=stage.value if stage else None,
        )
    return note.strip()


class WorkflowEngine:
    """Stage transition engine for one workflow variant."""

    def __init__(self, variant: WorkflowVariant = STANDARD, *, log_transitions: bool = True):
        self.variant = variant
        self.rules = StageTransitionRule(variant)
        self.capability = RoleCapability(variant, self.rules)
        self._log_transitions = log_transitions
        self._dry_run_engine: WorkflowEngine | None = None

    # ── Queries ──────────────────────────────────────────────────────────

    def current_stage(self, showset: ShowSet) -> StageName:
        """First stage that is not complete; the last stage once all are."""
        for stage in self.variant.stage_order:
            if showset.status_of(stage) != S.COMPLETE:
                return stage
        return self.variant.stage_order[-1]

    def downstream_needs_revision(self, showset: ShowSet, stage: StageName | str) -> bool:
        return downstream_needs_revision(showset, self.rules.stage_of(stage), self.variant)

    # ── Internals ────────────────────────────────────────────────────────

    def _parse_status(self, value: StageStatus | str) -> StageStatus:
        try:
            return StageStatus(value)
        except ValueError:
            raise InvalidTransitionError(f"Unknown status: {value!r}") from None

    def _result(self, action: str, actor: Actor, showset: ShowSet,
                effects: Iterable[Effect]) -> TransitionResult:
        effects = tuple(effects)
        if self._log_transitions:
            logger.info(
                "ShowSet transition applied showset=%s action=%s user=%s role=%s effects=%s",
                showset.showset_id, action, actor.user_id, actor.role.value,
                ",".join(e.kind for e in effects) or "-",
                extra={"showset_id": showset.showset_id, "action": action,
                       "user_id": actor.user_id, "role": actor.role.value},
            )
        return TransitionResult(showset=showset, effects=effects)

    # ── start ────────────────────────────────────────────────────────────

    def start(
        self,
        showset: ShowSet,
        actor: Actor,
        stage: StageName | str,
        *,
        skip_version_increment: bool = False,
        now: datetime | None = None,
    ) -> TransitionResult:
        """Begin (or resume) work on ``stage``.

        * ``not_started`` -> ``in_progress`` once every earlier stage is complete.
        * ``revision_required`` -> ``in_progress``, bumping the stage's
          version group unless ``skip_version_increment`` is set.
        * ``complete`` -> ``in_progress`` only while a dependant stage needs
          revision. Reopening settled work never bumps a version.
        """
        now = now or utcnow()
        lock_guard.ensure_unlocked(showset)
        stage = self.rules.stage_of(stage)
        self.capability.check(actor.role, stage, S.IN_PROGRESS)

        record = showset.stage(stage)
        current = record.status
        details = {}
        if current == S.NOT_STARTED:
            blocking = [p.value for p in self.variant.predecessors(stage)
                        if showset.status_of(p) != S.COMPLETE]
            if blocking:
                raise InvalidTransitionError(
                    f"Cannot start '{stage.value}' before {', '.join(blocking)} complete",
                    stage=stage.value,
                    details={"blockedBy": blocking},
                )
        elif current == S.COMPLETE:
            if not downstream_needs_revision(showset, stage, self.variant):
                raise InvalidTransitionError(
                    f"Stage '{stage.value}' is complete and nothing downstream needs revision",
                    stage=stage.value,
                )
            details["reopened"] = True
        elif current not in START_SOURCES:
            raise InvalidTransitionError(
                f"Cannot start '{stage.value}' from status '{current.value}'",
                stage=stage.value,
                details={"from": current.value},
            )

        updated = showset.with_stages({stage: record.transition(S.IN_PROGRESS, actor, now)})
        effects = [_status_change(stage, current, S.IN_PROGRESS, **details)]

        bump = auto_increment(showset, stage, current, S.IN_PROGRESS, actor, now,
                              skip=skip_version_increment)
        if bump:
            version_type, version, entry = bump
            updated = updated.with_version(version_type, version, entry)
            effects.append(_version_effect("version_bump", stage, version_type, version, entry))

        return self._result("start", actor, updated, effects)

    # ── finish ───────────────────────────────────────────────────────────

    def _finish_one(self, showset: ShowSet, actor: Actor, stage: StageName,
                    mark_complete: bool, now: datetime) -> tuple[ShowSet, list[Effect]]:
        record = showset.stage(stage)
        current = record.status

        if current in REVIEW_STATUSES:
            # Reviewer finishing its own review step: approve or leave as is
            self.capability.check(actor.role, stage, S.COMPLETE)
            if current not in review_authority(actor.role):
                raise InvalidStatusForRoleError(
                    f"Role '{actor.role.value}' cannot advance '{stage.value}' out of {current.value}",
                    stage=stage.value,
                )
            nxt = self.rules.next_on_review(stage, current) if mark_complete else current
        else:
            self.capability.check(actor.role, stage, S.IN_PROGRESS)
            nxt = self.rules.next_on_finish(stage, current, mark_complete)

        if nxt == current:
            return showset, [Effect(kind="work_paused", stage=stage, details={"status": current.value})]

        updated = showset.with_stages({stage: record.transition(nxt, actor, now)})
        return updated, [_status_change(stage, current, nxt)]

    def finish(
        self,
        showset: ShowSet,
        actor: Actor,
        stages: Iterable[StageName | str] | None = None,
        *,
        mark_complete: bool = True,
        context: WorkingContext | None = None,
        now: datetime | None = None,
    ) -> TransitionResult:
        """Finish work on one or more stages.

        Explicit ``stages`` are validated strictly. Without them the
        working context decides; context entries that no longer apply are
        skipped. With neither (or nothing usable in the context) the
        current stage is finished.
        """
        now = now or utcnow()
        lock_guard.ensure_unlocked(showset)

        updated, effects = showset, []
        if stages:
            for stage in [self.rules.stage_of(s) for s in stages]:
                updated, step = self._finish_one(updated, actor, stage, mark_complete, now)
                effects.extend(step)
            return self._result("finish", actor, updated, effects)

        if context is not None:
            for stage in context.stages:
                try:
                    stage = self.rules.stage_of(stage)
                    updated, step = self._finish_one(updated, actor, stage, mark_complete, now)
                except WorkflowError as exc:
                    logger.debug("Skipping stale working-context stage=%s showset=%s: %s",
                                 stage, showset.showset_id, exc)
                    continue
                effects.extend(step)
            if effects:
                return self._result("finish", actor, updated, effects)

        stage = self.current_stage(showset)
        updated, effects = self._finish_one(showset, actor, stage, mark_complete, now)
        return self._result("finish", actor, updated, effects)

    # ── approve / reject ─────────────────────────────────────────────────

    def approve(
        self,
        showset: ShowSet,
        actor: Actor,
        stage: StageName | str,
        decision: StageStatus | str,
        *,
        note: str | None = None,
        note_lang: str = "en",
        now: datetime | None = None,
    ) -> TransitionResult:
        """Approve (``complete``) or reject (``revision_required``) a stage in review."""
        now = now or utcnow()
        lock_guard.ensure_unlocked(showset)
        stage = self.rules.stage_of(stage)
        decision = self._parse_status(decision)
        self.capability.check(actor.role, stage, decision)
        if decision not in APPROVAL_STATUSES:
            raise InvalidTransitionError(
                f"Review decision must be complete or revision_required, got '{decision.value}'",
                stage=stage.value,
            )

        record = showset.stage(stage)
        current = record.status
        if current not in REVIEW_STATUSES:
            raise InvalidTransitionError(
                f"Stage '{stage.value}' is not awaiting review (status={current.value})",
                stage=stage.value,
                details={"from": current.value},
            )
        if current not in review_authority(actor.role):
            raise InvalidStatusForRoleError(
                f"Role '{actor.role.value}' cannot review '{stage.value}' in {current.value}",
                stage=stage.value,
                details={"role": actor.role.value, "status": current.value},
            )

        if decision == S.REVISION_REQUIRED:
            note = _require_note(note, stage)
            new_record = record.transition(S.REVISION_REQUIRED, actor, now, note=note)
            effects = [
                _status_change(stage, current, S.REVISION_REQUIRED, decision="rejected"),
                Effect(kind="revision_note", stage=stage,
                       details={"note": note, "language": note_lang}),
            ]
        else:
            nxt = self.rules.next_on_review(stage, current)
            new_record = record.transition(nxt, actor, now)
            effects = [_status_change(stage, current, nxt, decision="approved")]

        updated = showset.with_stages({stage: new_record})
        return self._result("approve", actor, updated, effects)

    # ── recall ───────────────────────────────────────────────────────────

    def recall(
        self,
        showset: ShowSet,
        actor: Actor,
        review_stage: StageName | str,
        target_stage: StageName | str,
        *,
        start_work: bool = True,
        note: str | None = None,
        note_lang: str = "en",
        now: datetime | None = None,
    ) -> TransitionResult:
        """Pull work out of review back to ``target_stage`` without a reviewer.

        The target lands in ``in_progress`` (or ``revision_required`` when
        ``start_work`` is false, which then needs a note). Only roles that
        work the target stage may recall; reviewers reject through
        ``approve``. Every stage after the target up to the review stage, and
        any completed stage beyond it, is invalidated.
        """
        now = now or utcnow()
        lock_guard.ensure_unlocked(showset)
        review_stage = self.rules.stage_of(review_stage)
        target = self.rules.stage_of(target_stage)
        landing = S.IN_PROGRESS if start_work else S.REVISION_REQUIRED
        self.capability.check(actor.role, target, S.IN_PROGRESS)

        review_status = showset.status_of(review_stage)
        if review_status not in REVIEW_STATUSES:
            raise InvalidTransitionError(
                f"Recall requires '{review_stage.value}' to be in review (status={review_status.value})",
                stage=review_stage.value,
            )
        if target not in self.rules.recall_targets(review_stage):
            raise InvalidTransitionError(
                f"Recall target '{target.value}' comes after review stage '{review_stage.value}'",
                stage=target.value,
            )

        record = showset.stage(target)
        if start_work:
            note = note.strip() if note and note.strip() else None
        else:
            note = _require_note(note, target)
        new_target = record.transition(landing, actor, now, note=None if start_work else note)
        cascade = invalidation_targets(showset, target, review_stage, self.variant)
        updates, cascade_effects = apply_invalidation(
            showset, cascade, actor, now, note=note, reason="recall",
        )
        updates[target] = new_target

        effects = [
            Effect(kind="recall", stage=target, details={
                "reviewStage": review_stage.value,
                "reviewStatus": review_status.value,
                "to": landing.value,
            }),
            _status_change(target, record.status, landing),
            *cascade_effects,
        ]
        if note:
            effects.append(Effect(kind="revision_note", stage=target,
                                  details={"note": note, "language": note_lang}))
        return self._result("recall", actor, showset.with_stages(updates), effects)

    # ── upstream revision ────────────────────────────────────────────────

    def request_upstream_revision(
        self,
        showset: ShowSet,
        actor: Actor,
        current_stage: StageName | str,
        target_stages: Iterable[StageName | str],
        note: str | None,
        *,
        note_lang: str = "en",
        attachment_id: str | None = None,
        now: datetime | None = None,
    ) -> TransitionResult:
        """Send earlier stages back for rework from ``current_stage``.

        ``current_stage`` must have been started. Targets and every stage from the earliest target through
        ``current_stage`` (plus completed stages beyond it) become
        ``revision_required`` carrying the note. Versions are untouched;
        the bump happens when the rework is actually started.
        """
        now = now or utcnow()
        lock_guard.ensure_unlocked(showset)
        current = self.rules.stage_of(current_stage)
        self.capability.check(actor.role, current, S.REVISION_REQUIRED)
        if showset.status_of(current) == S.NOT_STARTED:
            raise InvalidTransitionError(
                f"Cannot request revision from '{current.value}' before work on it has started",
                stage=current.value,
                details={"from": S.NOT_STARTED.value},
            )
        note = _require_note(note, current)

        targets = [self.rules.stage_of(t) for t in target_stages]
        if not targets:
            raise InvalidTransitionError("At least one target stage is required", stage=current.value)
        current_idx = self.variant.index_of(current)
        for t in targets:
            if self.variant.index_of(t) >= current_idx:
                raise InvalidTransitionError(
                    f"Revision target '{t.value}' must come before '{current.value}'",
                    stage=t.value,
                )

        earliest = min(targets, key=self.variant.index_of)
        cascade = invalidation_targets(showset, earliest, current, self.variant)
        flagged = sorted(set(targets) | set(cascade), key=self.variant.index_of)
        updates, cascade_effects = apply_invalidation(
            showset, flagged, actor, now, note=note, reason="upstream_revision",
        )
        if not updates:
            logger.debug("Upstream revision already applied showset=%s targets=%s",
                         showset.showset_id, [t.value for t in targets])
            return TransitionResult(showset=showset, effects=())

        effects = [
            Effect(kind="upstream_revision_requested", stage=current, details={
                "targetStages": [t.value for t in targets],
                "note": note,
                "language": note_lang,
                "attachmentId": attachment_id,
            }),
            *cascade_effects,
        ]
        return self._result("request_upstream_revision", actor, showset.with_stages(updates), effects)

    # ── versions ─────────────────────────────────────────────────────────

    def set_version(
        self,
        showset: ShowSet,
        actor: Actor,
        version_type,
        *,
        target_version: int | None = None,
        reason="",
        language: str = "en",
        now: datetime | None = None,
    ) -> TransitionResult:
        now = now or utcnow()
        lock_guard.ensure_unlocked(showset)
        if not can_edit_versions(actor):
            raise ForbiddenError(
                "Editing versions requires admin or version-edit permission",
                details={"role": actor.role.value},
            )
        version_type, version, entry = manual_set(
            showset, version_type, target_version, reason, language, actor, now,
        )
        updated = showset.with_version(version_type, version, entry)
        effects = [_version_effect("version_manual", None, version_type, version, entry)]
        return self._result("set_version", actor, updated, effects)

    # ── lock / unlock ────────────────────────────────────────────────────

    def lock(self, showset: ShowSet, actor: Actor, *, reason: str | None = None,
             now: datetime | None = None) -> TransitionResult:
        now = now or utcnow()
        updated = lock_guard.lock(showset, actor, now, reason)
        effects = [Effect(kind="showset_locked", details={"reason": reason})]
        return self._result("lock", actor, updated, effects)

    def unlock(
        self,
        showset: ShowSet,
        actor: Actor,
        stages_to_reset: Iterable[StageName | str] = (),
        *,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> TransitionResult:
        now = now or utcnow()
        stages = [self.rules.stage_of(s) for s in stages_to_reset]
        updated, resets = lock_guard.unlock(showset, actor, stages, now, reason)
        effects = [Effect(kind="showset_unlocked", details={
            "stagesToReset": [s.value for s in stages],
            "reason": reason,
        })]
        effects.extend(
            _status_change(s, S.COMPLETE, S.REVISION_REQUIRED, reason="unlock_reset") for s in resets
        )
        return self._result("unlock", actor, updated, effects)

    # ── assignment / admin override ──────────────────────────────────────

    def assign(self, showset: ShowSet, actor: Actor, stage: StageName | str,
               assignee: str | None, *, now: datetime | None = None) -> TransitionResult:
        lock_guard.ensure_unlocked(showset)
        stage = self.rules.stage_of(stage)
        if stage not in self.capability.stages_for(actor.role):
            raise ForbiddenError(
                f"Role '{actor.role.value}' cannot assign stage '{stage.value}'",
                stage=stage.value,
            )
        record = showset.stage(stage)
        updated = showset.with_stages({stage: replace(record, assigned_to=assignee or None)})
        effects = [Effect(kind="assignment", stage=stage,
                          details={"from": record.assigned_to, "to": assignee or None})]
        return self._result("assign", actor, updated, effects)

    def override_status(
        self,
        showset: ShowSet,
        actor: Actor,
        stage: StageName | str,
        status: StageStatus | str,
        *,
        note: str | None = None,
        now: datetime | None = None,
    ) -> TransitionResult:
        """Admin-only direct status set. The status must still be legal for the stage."""
        now = now or utcnow()
        lock_guard.ensure_unlocked(showset)
        if not is_admin(actor.role):
            raise ForbiddenError("Only admins may override a stage status",
                                 details={"role": actor.role.value})
        stage = self.rules.stage_of(stage)
        status = self._parse_status(status)
        self.rules.ensure_legal(stage, status)

        record = showset.stage(stage)
        updated = showset.with_stages({stage: record.transition(status, actor, now, note=note)})
        effects = [Effect(kind="status_override", stage=stage, details={
            "from": record.status.value,
            "to": status.value,
            "note": note,
        })]
        return self._result("override_status", actor, updated, effects)

    # ── available actions ────────────────────────────────────────────────

    def _accepts(self, fn, *args, **kwargs) -> bool:
        try:
            fn(*args, **kwargs)
        except WorkflowError:
            return False
        return True

    def available_actions(self, showset: ShowSet, actor: Actor) -> dict:
        """Actions ``actor`` could take right now, per stage and ShowSet-wide.

        Computed by dry-running each action on the snapshot, so the answer
        can never drift from what the engine would actually accept.
        """
        if self._dry_run_engine is None:
            self._dry_run_engine = WorkflowEngine(self.variant, log_transitions=False)
        dry = self._dry_run_engine
        now = utcnow()

        stages: dict[str, list[str]] = {}
        for stage in self.variant.stage_order:
            actions = []
            if self._accepts(dry.start, showset, actor, stage, now=now):
                actions.append("start")
            if self._accepts(dry.finish, showset, actor, [stage], now=now):
                actions.append("finish")
            if self._accepts(dry.approve, showset, actor, stage, S.COMPLETE, now=now):
                actions.append("approve")
            if self._accepts(dry.approve, showset, actor, stage, S.REVISION_REQUIRED,
                           note=_DRY_RUN_NOTE, now=now):
                actions.append("reject")
            if showset.status_of(stage) in REVIEW_STATUSES and any(
                self._accepts(dry.recall, showset, actor, stage, target, now=now)
                for target in self.rules.recall_targets(stage)
            ):
                actions.append("recall")
            if self._accepts(dry.assign, showset, actor, stage, actor.user_id, now=now):
                actions.append("assign")
            if not showset.is_locked and is_admin(actor.role):
                actions.append("override")
            stages[stage.value] = actions

        showset_actions = []
        current = self.current_stage(showset)
        earlier = self.variant.predecessors(current)
        if earlier and self._accepts(dry.request_upstream_revision, showset, actor, current,
                                   [earlier[-1]], _DRY_RUN_NOTE, now=now):
            showset_actions.append("request_revision")
        if not showset.is_locked and can_edit_versions(actor):
            showset_actions.append("set_version")
        if self._accepts(dry.lock, showset, actor, now=now):
            showset_actions.append("lock")
        if self._accepts(dry.unlock, showset, actor, now=now):
            showset_actions.append("unlock")

        return {
            "currentStage": current.value,
            "locked": showset.is_locked,
            "stages": stages,
            "showSet": showset_actions,
        }
