"""Exception hierarchy for the Bedrock Server Wrapper."""


class BedrockServerWrapperError(Exception):
    """Base exception for all Bedrock Server Wrapper errors."""
    pass


class ConfigError(BedrockServerWrapperError):
    """Raised when the configuration can't be loaded or saved."""
    pass


class ServerError(BedrockServerWrapperError):
    """Raised when the server process can't be started or talked to."""
    pass


class BackupError(BedrockServerWrapperError):
    """Raised when staging or archiving a backup fails."""
    pass


class UpdateError(BedrockServerWrapperError):
    """Raised when downloading server files or update metadata fails."""
    pass
