"""Review Automations Core Package - Types, Config, Errors, and Protocols."""

from .config import AutomationConfig, Environment, get_config
from .errors import (
    ActionExecutionError,
    AutomationError,
    ConditionEvaluationError,
    EngineNotRunningError,
    IntegrationError,
    InvalidAssigneeError,
    InvalidAutomationError,
    InvalidEventError,
    RepositoryError,
    ReviewNotFoundError,
    SendGridError,
)
from .protocols import (
    AutomationStore,
    DeliveryLedgerProtocol,
    MailSender,
    ReviewStore,
)
from .types import (
    ActionConfig,
    # Action configs
    ActionType,
    AssignReviewConfig,
    AutomationRule,
    ChatNotificationConfig,
    DeliveryOutcome,
    EmailAlertConfig,
    # Events
    Event,
    EventKind,
    KeywordConditions,
    Match,
    MatchSet,
    NoConditions,
    ReviewSnapshot,
    TagReviewConfig,
    ThresholdConditions,
    TriggerConditions,
    # Triggers
    TriggerType,
    WebhookConfig,
    parse_action_config,
    parse_trigger_conditions,
    utcnow,
)

__all__ = [
    # Config
    "AutomationConfig",
    "Environment",
    "get_config",
    # Errors
    "AutomationError",
    "ActionExecutionError",
    "ConditionEvaluationError",
    "EngineNotRunningError",
    "IntegrationError",
    "InvalidAssigneeError",
    "InvalidAutomationError",
    "InvalidEventError",
    "RepositoryError",
    "ReviewNotFoundError",
    "SendGridError",
    # Triggers
    "TriggerType",
    "TriggerConditions",
    "NoConditions",
    "ThresholdConditions",
    "KeywordConditions",
    "parse_trigger_conditions",
    # Actions
    "ActionType",
    "ActionConfig",
    "EmailAlertConfig",
    "ChatNotificationConfig",
    "WebhookConfig",
    "TagReviewConfig",
    "AssignReviewConfig",
    "parse_action_config",
    # Rules and events
    "AutomationRule",
    "Event",
    "EventKind",
    "ReviewSnapshot",
    "Match",
    "MatchSet",
    "DeliveryOutcome",
    "utcnow",
    # Protocols
    "AutomationStore",
    "ReviewStore",
    "DeliveryLedgerProtocol",
    "MailSender",
]
