"""Custom exception types for the reply mail filter.

Error messages say what failed, where it failed, why it failed and, where
possible, how to fix it.

Per-message errors derive from MessageProcessingError and carry the message
identifier and the stage reached, so the caller can log and skip the message
without aborting the whole run. Everything else is fatal for the run.
"""


class MailFilterError(Exception):
    """Base exception for all reply mail filter errors."""

    pass


class ConfigValidationError(MailFilterError):
    """Raised when config.yaml fails Pydantic validation.

    Includes specific field errors with actionable messages.
    """

    pass


class ConfigLoadError(MailFilterError):
    """Raised when config.yaml cannot be loaded (file not found, YAML parse error)."""

    pass


class RuleError(MailFilterError):
    """Raised when a rule file cannot be read or one of its rules is invalid.

    Rules are compiled when the rule set is built, so a bad rule fails the
    run before any message is touched.

    Attributes:
        source: Rule file path (or other label) the rule came from
        line_number: 1-based line of the offending rule, if known
    """

    def __init__(self, message: str, source: str | None = None, line_number: int | None = None):
        super().__init__(message)
        self.source = source
        self.line_number = line_number


class MailboxError(MailFilterError):
    """Raised when an IMAP connection or command fails.

    Attributes:
        command: IMAP command that failed (e.g. 'SELECT', 'FETCH')
    """

    def __init__(self, message: str, command: str | None = None):
        super().__init__(message)
        self.command = command


class MessageProcessingError(MailFilterError):
    """Base for errors that abort processing of a single message.

    Attributes:
        message_id: Identifier of the message (spool file name, IMAP sequence number)
        stage: Last processing stage reached ('parse', 'filter', 'prune', 'serialize')
    """

    def __init__(self, message: str, message_id: str | None = None, stage: str | None = None):
        super().__init__(message)
        self.message_id = message_id
        self.stage = stage


class ParseError(MessageProcessingError):
    """Raised when input bytes cannot be interpreted as a MIME message."""

    def __init__(self, message: str, message_id: str | None = None):
        super().__init__(message, message_id=message_id, stage="parse")


class FilterError(MessageProcessingError):
    """Raised when a rule cannot be applied to a part, e.g. on regex timeout.

    Attributes:
        rule: The pattern or selector that failed
    """

    def __init__(self, message: str, message_id: str | None = None, rule: str | None = None):
        super().__init__(message, message_id=message_id, stage="filter")
        self.rule = rule


class SerializationError(MessageProcessingError):
    """Raised when the rewritten part tree cannot be encoded back to bytes."""

    def __init__(self, message: str, message_id: str | None = None):
        super().__init__(message, message_id=message_id, stage="serialize")
