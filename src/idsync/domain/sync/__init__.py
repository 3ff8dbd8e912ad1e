"""Synchronisation core.

Flow of one object through the engine:
1) import stages connector objects as CSOs
2) synchronisation joins or projects each CSO to a metaverse object
3) attribute flow recomputes the metaverse object from its contributors
4) export planning diffs every export rule's target against the CSO it owns
5) export execution pushes pending exports in batches and records results
6) deferred references are re-planned once their targets exist
"""

from __future__ import annotations

from .attribute_flow import AttributeFlowEvaluator, AttributeFlowResult, Contribution
from .backoff import RetryBackoff
from .catalog import SchemaCatalog
from .confirmation import ConfirmationReconciler
from .engine import ConnectorRegistry, SyncEngine
from .execution import (
    ExportExecutionOptions,
    ExportExecutor,
    ExportPhase,
    ExportProgressInfo,
    SyncRunMode,
)
from .expressions import CompiledExpression, compile_expression, evaluate_expression
from .importing import ImportProcessor
from .locking import KeyedLock
from .matching import MatchingPolicy, MatchOutcome, MatchOutcomeKind, ObjectMatcher
from .planning import ExportPlanner
from .references import DeferredReferenceResolver
from .scoping import is_in_scope
from .synchronising import Synchroniser

__all__ = [
    "AttributeFlowEvaluator",
    "AttributeFlowResult",
    "CompiledExpression",
    "ConfirmationReconciler",
    "ConnectorRegistry",
    "Contribution",
    "DeferredReferenceResolver",
    "ExportExecutionOptions",
    "ExportExecutor",
    "ExportPhase",
    "ExportPlanner",
    "ExportProgressInfo",
    "ImportProcessor",
    "KeyedLock",
    "MatchOutcome",
    "MatchOutcomeKind",
    "MatchingPolicy",
    "ObjectMatcher",
    "RetryBackoff",
    "SchemaCatalog",
    "SyncEngine",
    "SyncRunMode",
    "Synchroniser",
    "compile_expression",
    "evaluate_expression",
    "is_in_scope",
]
