"""Custom exceptions for the pangenome construction pipeline."""

import time
from typing import Optional, Dict, Any, List
from pathlib import Path


class PipelineError(Exception):
    """Base exception for pipeline errors."""

    def __init__(self, message: str, stage: Optional[str] = None) -> None:
        self.stage = stage
        self.timestamp = time.time()
        super().__init__(message)


class ToolExecutionError(PipelineError):
    """External tool execution failed."""

    def __init__(self, tool: str, command: str, returncode: int, stderr: str,
                 stage: Optional[str] = None, log_file: Optional[Path] = None) -> None:
        self.tool = tool
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        self.log_file = log_file
        message = f"{tool} failed with return code {returncode}"
        if log_file is not None:
            message += f" - the errors are logged at {log_file}"
        super().__init__(message, stage)

    def get_error_details(self) -> Dict[str, Any]:
        """Get structured error details for logging."""
        return {
            "tool": self.tool,
            "command": self.command,
            "returncode": self.returncode,
            "stderr": self.stderr,
            "log_file": str(self.log_file) if self.log_file else None,
            "timestamp": self.timestamp,
            "stage": self.stage
        }


class ValidationError(PipelineError):
    """Input data validation failed."""

    def __init__(self, message: str, errors: Optional[List[str]] = None,
                 stage: Optional[str] = None) -> None:
        self.errors = errors or []
        super().__init__(message, stage)


class InvariantViolation(PipelineError):
    """Locus membership counts disagree between pipeline stages."""

    def __init__(self, message: str, expected: Optional[int] = None,
                 observed: Optional[int] = None, stage: Optional[str] = None) -> None:
        self.expected = expected
        self.observed = observed
        if expected is not None and observed is not None:
            message = f"{message} (expected {expected}, observed {observed})"
        super().__init__(message, stage)


class ConfigurationError(PipelineError):
    """Configuration error."""

    def __init__(self, message: str, config_path: Optional[Path] = None,
                 stage: Optional[str] = None) -> None:
        self.config_path = config_path
        super().__init__(message, stage)


class DependencyError(PipelineError):
    """Missing external dependency."""

    def __init__(self, message: str, dependency: str, stage: Optional[str] = None) -> None:
        self.dependency = dependency
        super().__init__(message, stage)
