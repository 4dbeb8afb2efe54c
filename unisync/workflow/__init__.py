"""ShowSet stage/version/lock state machine. Pure, no I/O."""

from unisync.workflow.constants import (  # noqa: F401
    STAGE_ORDER,
    Language,
    Role,
    StageName,
    StageStatus,
    VersionType,
)
from unisync.workflow.engine import WorkflowEngine  # noqa: F401
from unisync.workflow.snapshot import (  # noqa: F401
    Actor,
    Effect,
    LocalizedText,
    ShowSet,
    StageRecord,
    TransitionResult,
    VersionHistoryEntry,
    WorkingContext,
)
from unisync.workflow.variants import PRESETS, WorkflowVariant, get_variant  # noqa: F401
