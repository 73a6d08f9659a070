"""
Error kinds raised by the enrichment engine.

A missed rule match is not an error: it is reported as the UNMATCHED
classification and routed to manual review.
"""


class EnrichmentError(Exception):
    """Base class for all enrichment errors."""


class StepFault(EnrichmentError):
    """
    A step could not complete for the current record.

    Steps may raise it directly; BaseStep.execute wraps any other exception
    in one and reports it as a failed StepResult.
    """

    def __init__(self, step_name: str, message: str):
        self.step_name = step_name
        self.message = message
        super().__init__(f"{step_name} error: {message}")


class PersistenceFault(EnrichmentError):
    """Raised when a row-store read or write fails."""

    def __init__(self, collection: str, message: str, record_id: str | None = None):
        self.collection = collection
        self.record_id = record_id
        self.message = message
        target = f"{collection}/{record_id}" if record_id else collection
        super().__init__(f"{target}: {message}")


class ConfigurationFault(EnrichmentError):
    """Raised for an unusable pipeline, rule or run configuration."""


class ConditionSyntaxError(ConfigurationFault):
    """Raised when a rule condition cannot be parsed."""

    def __init__(self, message: str, expression: str, position: int):
        self.message = message
        self.expression = expression
        self.position = position
        super().__init__(f"{message} at position {position} in condition: {expression!r}")
