"""Ledger snapshots and isolated action runs."""

from .snapshot import (
    Action,
    ActionOutcome,
    ActionRunner,
    Snapshotter,
    SubmittedTransaction,
    actions_from_config,
    resolve_arg,
)
