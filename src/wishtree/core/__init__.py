"""Wishtree Core - lifecycle state machine and token distribution engine."""

from .cascade import CascadeResult, close_with_children
from .config import CoreSettings, clear_config_cache, get_config
from .distribution import (
    DistributionPlan,
    distribute,
    equal_split_amount,
    max_distributable,
    validate_token_distribution,
)
from .exceptions import (
    AlreadyTerminal,
    ClosureAlreadyRecorded,
    ConfigException,
    DatabaseException,
    InvalidTransition,
    NotFoundError,
    PreconditionFailed,
    Unauthorized,
    ValidationException,
    WishTreeException,
)
from .logging import (
    IntentLogger,
    configure_logging,
    get_logger,
    intent_logger,
)
from .memory_store import InMemoryTreeStore
from .models import (
    Action,
    Actor,
    ActorRole,
    DistributionShare,
    LedgerKind,
    Node,
    NodeStatus,
    NodeType,
    SettlementType,
    VoteTally,
    VoteType,
    VotingConfig,
)
from .service import AcceptanceResult, DistributionSummary, WishService
from .settlement import SettlementDecision, resolve_settlement
from .store import StoreSession, TreeStore
from .transitions import TRANSITIONS, TransitionContext, transition

__all__ = [
    # Models
    "Action",
    "Actor",
    "ActorRole",
    "DistributionShare",
    "LedgerKind",
    "Node",
    "NodeStatus",
    "NodeType",
    "SettlementType",
    "VoteTally",
    "VoteType",
    "VotingConfig",
    # State machine
    "TRANSITIONS",
    "TransitionContext",
    "transition",
    # Settlement and distribution
    "SettlementDecision",
    "resolve_settlement",
    "DistributionPlan",
    "distribute",
    "equal_split_amount",
    "max_distributable",
    "validate_token_distribution",
    # Cascade
    "CascadeResult",
    "close_with_children",
    # Storage and service
    "StoreSession",
    "TreeStore",
    "InMemoryTreeStore",
    "WishService",
    "AcceptanceResult",
    "DistributionSummary",
    # Config
    "CoreSettings",
    "get_config",
    "clear_config_cache",
    # Exceptions
    "WishTreeException",
    "AlreadyTerminal",
    "ClosureAlreadyRecorded",
    "ConfigException",
    "DatabaseException",
    "InvalidTransition",
    "NotFoundError",
    "PreconditionFailed",
    "Unauthorized",
    "ValidationException",
    # Logging
    "configure_logging",
    "get_logger",
    "IntentLogger",
    "intent_logger",
]
