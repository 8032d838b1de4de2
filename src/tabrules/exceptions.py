"""tabrules exception hierarchy.

All tabrules-specific exceptions inherit from TabRulesError.
"""


class TabRulesError(Exception):
    """Base exception for all tabrules errors."""


class RuleNotFoundError(TabRulesError):
    """Raised when a rule id lookup fails."""

    def __init__(self, rule_id: str) -> None:
        self.rule_id = rule_id
        super().__init__(f"Rule not found: {rule_id}")


class RuleValidationError(TabRulesError):
    """Raised when a rule definition cannot be parsed.

    Named RuleValidationError (not ValidationError) to avoid
    collision with pydantic.ValidationError.
    """


class StorageError(TabRulesError):
    """Raised when the rule store cannot be read or written."""


class TabOperationError(TabRulesError):
    """Raised when a browser tab operation is rejected."""


class TabNotFoundError(TabOperationError):
    """Raised when a tab id does not exist in the browser."""

    def __init__(self, tab_id: int) -> None:
        self.tab_id = tab_id
        super().__init__(f"No tab with id: {tab_id}")


class GroupNotFoundError(TabOperationError):
    """Raised when a tab group id does not exist in the browser."""

    def __init__(self, group_id: int) -> None:
        self.group_id = group_id
        super().__init__(f"No group with id: {group_id}")
