"""tabrules: declarative automation rules for browser tabs.

Rules select tabs by URL, title or domain, gate on tab age, inactivity,
duplicates or tab count, and then close, pin, mute, discard, highlight or
group the tabs that qualify. A RuleEngine evaluates them on a timer.
"""

from tabrules._version import __version__

# Core entry point
from tabrules.rule_engine import EngineState, RuleEngine

# Tab snapshots
from tabrules.models.tab import TAB_GROUP_ID_NONE, GroupColor, Tab, TabGroup

# Rule definitions
from tabrules.models.rule import (
    Action,
    ActionMatcher,
    ActionParams,
    ActionType,
    Condition,
    ConditionMatcher,
    ConditionType,
    JoinOperator,
    NumericOperator,
    Rule,
    StringOperator,
    Subject,
    SubjectField,
    SubjectMatcher,
    SubjectType,
    TimeUnit,
    describe_rule,
    generate_rule_id,
    new_rule,
)

# Configuration and results
from tabrules.models.config import EngineConfig
from tabrules.models.evaluation import ActionOutcome, CycleReport, RuleEvaluation

# Pipeline stages
from tabrules.engine.tracker import AccessTracker
from tabrules.engine.subjects import filter_subjects, match_value
from tabrules.engine.conditions import ConditionEvaluator
from tabrules.engine.actions import ActionExecutor

# Protocols
from tabrules.protocols import RuleSource, TabEvent, TabEventSource, TabProvider

# Hosts and storage
from tabrules.browser import InMemoryBrowser, MutationRecord
from tabrules.storage.store import RuleStore

# Exceptions
from tabrules.exceptions import (
    TabRulesError,
    RuleNotFoundError,
    RuleValidationError,
    StorageError,
    TabOperationError,
    TabNotFoundError,
    GroupNotFoundError,
)

__all__ = [
    "__version__",
    "RuleEngine",
    "EngineState",
    # Tabs
    "Tab",
    "TabGroup",
    "GroupColor",
    "TAB_GROUP_ID_NONE",
    # Rules
    "Rule",
    "Subject",
    "SubjectMatcher",
    "SubjectType",
    "SubjectField",
    "StringOperator",
    "Condition",
    "ConditionMatcher",
    "ConditionType",
    "NumericOperator",
    "TimeUnit",
    "Action",
    "ActionMatcher",
    "ActionParams",
    "ActionType",
    "JoinOperator",
    "new_rule",
    "generate_rule_id",
    "describe_rule",
    # Config and results
    "EngineConfig",
    "ActionOutcome",
    "RuleEvaluation",
    "CycleReport",
    # Pipeline
    "AccessTracker",
    "filter_subjects",
    "match_value",
    "ConditionEvaluator",
    "ActionExecutor",
    # Protocols
    "TabProvider",
    "TabEventSource",
    "TabEvent",
    "RuleSource",
    # Hosts and storage
    "InMemoryBrowser",
    "MutationRecord",
    "RuleStore",
    # Exceptions
    "TabRulesError",
    "RuleNotFoundError",
    "RuleValidationError",
    "StorageError",
    "TabOperationError",
    "TabNotFoundError",
    "GroupNotFoundError",
]
