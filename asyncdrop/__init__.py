from .duration import Duration
from .errors import (
    FinalizationError,
    FinalizationTimeout,
    UnexpectedFinalizationError,
    FatalFinalizationError,
    ConsistencyViolation,
    FinalizableMisuse,
    GuardReleasedError,
)
from .outcome import Outcome, FailurePolicy, apply_policy
from .finalizable import Finalizable
from .executor import Executor, AsyncioExecutor, run_unit
from .anyio_executor import AnyIOExecutor
from .logger import ConsoleLogger
from .settings import Settings, current_settings, configure, restore, use_settings
from .guard import FinalizationGuard
from .derive import reset_to_defaults, empty_of
from .oracle import (
    SharedEmpty,
    shared_empty,
    is_already_finalized,
    finalize_in_place,
    async_finalizable,
)
from .scope import DropScope
