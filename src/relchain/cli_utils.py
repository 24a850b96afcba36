"""CLI utility functions for relchain.

This module provides common utilities used across CLI commands including:
- Error handling and formatting
- Path validation for manifests and workspaces
"""

import sys
from pathlib import Path

from relchain.errors import (
    BuildFailure,
    CheckoutFailure,
    CyclicDependency,
    MalformedVersion,
    ManifestError,
    MissingArtifact,
    MissingDependency,
    PublishFailure,
    RegistryUnavailable,
    ReleaseCreationError,
    ReleaseError,
    TestFailure,
    ToolNotFound,
)

# Most specific first
ERROR_TITLES = (
    (MalformedVersion, "Invalid version"),
    (MissingDependency, "Missing dependency"),
    (CyclicDependency, "Circular dependency"),
    (ManifestError, "Invalid configuration"),
    (RegistryUnavailable, "Registry unavailable"),
    (CheckoutFailure, "Checkout failed!"),
    (BuildFailure, "Build failed!"),
    (TestFailure, "Tests failed!"),
    (PublishFailure, "Publish failed!"),
    (MissingArtifact, "Missing artifact"),
    (ReleaseCreationError, "Release creation failed!"),
    (ToolNotFound, "Tool not found"),
)


class ErrorFormatter:
    """Formats and displays error messages with ANSI color codes."""

    # ANSI color codes
    RED = "\033[1;31m"
    GREEN = "\033[1;32m"
    YELLOW = "\033[1;33m"
    RESET = "\033[0m"

    @staticmethod
    def print_error(title: str, message: str, verbose: bool = False) -> None:
        """Print formatted error message.

        Args:
            title: Error title (e.g., "File not found", "Build failed")
            message: Error message details
            verbose: Whether to print verbose output (e.g., traceback)
        """
        print()
        print(f"{ErrorFormatter.RED}✗ {title}{ErrorFormatter.RESET}")
        print()
        print(message)
        print()

    @staticmethod
    def print_success(message: str) -> None:
        """Print formatted success message.

        Args:
            message: Success message
        """
        print()
        print(f"{ErrorFormatter.GREEN}✓ {message}{ErrorFormatter.RESET}")

    @staticmethod
    def print_warning(message: str) -> None:
        """Print formatted warning message.

        Args:
            message: Warning message
        """
        print()
        print(f"{ErrorFormatter.YELLOW}✗ {message}{ErrorFormatter.RESET}")

    @staticmethod
    def error_title(error: ReleaseError) -> str:
        for error_type, title in ERROR_TITLES:
            if isinstance(error, error_type):
                return title
        return "Release failed!"

    @staticmethod
    def handle_release_error(error: ReleaseError, verbose: bool = False) -> None:
        """Handle a pipeline error with standard formatting.

        Args:
            error: The ReleaseError to handle
            verbose: Whether to print traceback
        """
        ErrorFormatter.print_error(ErrorFormatter.error_title(error), str(error))

        if verbose:
            import traceback

            print("Traceback:")
            print(traceback.format_exc())

        sys.exit(1)

    @staticmethod
    def handle_file_not_found(error: FileNotFoundError) -> None:
        """Handle FileNotFoundError with standard formatting.

        Args:
            error: The FileNotFoundError to handle
        """
        ErrorFormatter.print_error("Error: File not found", str(error))
        print("Make sure you're in a release directory with a versions.toml file.")
        sys.exit(1)

    @staticmethod
    def handle_permission_error(error: PermissionError) -> None:
        """Handle PermissionError with standard formatting.

        Args:
            error: The PermissionError to handle
        """
        ErrorFormatter.print_error("Error: Permission denied", str(error))
        sys.exit(1)

    @staticmethod
    def handle_keyboard_interrupt() -> None:
        """Handle KeyboardInterrupt with standard formatting."""
        ErrorFormatter.print_warning("Release interrupted")
        sys.exit(130)  # Standard exit code for SIGINT

    @staticmethod
    def handle_unexpected_error(error: Exception, verbose: bool = False) -> None:
        """Handle unexpected errors with standard formatting.

        Args:
            error: The exception to handle
            verbose: Whether to print traceback
        """
        message = f"{type(error).__name__}: {error}"
        ErrorFormatter.print_error("Unexpected error", message)

        if verbose:
            import traceback

            print("Traceback:")
            print(traceback.format_exc())

        sys.exit(1)


class PathValidator:
    """Validates manifest paths and workspace directories."""

    @staticmethod
    def validate_manifest_file(path: Path) -> None:
        """Validate that the version manifest exists and is a file.

        Args:
            path: Path to versions.toml

        Raises:
            SystemExit: If path doesn't exist or isn't a file
        """
        if not path.exists():
            print(
                f"{ErrorFormatter.RED}✗ Error: Version manifest does not exist: {path}{ErrorFormatter.RESET}"
            )
            sys.exit(2)
        if not path.is_file():
            print(
                f"{ErrorFormatter.RED}✗ Error: Version manifest is not a file: {path}{ErrorFormatter.RESET}"
            )
            sys.exit(2)

    @staticmethod
    def validate_workspace_dir(workspace: Path) -> None:
        """Validate that the workspace exists and is a directory.

        Args:
            workspace: Path to validate

        Raises:
            SystemExit: If path doesn't exist or isn't a directory
        """
        if not workspace.exists():
            print(
                f"{ErrorFormatter.RED}✗ Error: Path does not exist: {workspace}{ErrorFormatter.RESET}"
            )
            sys.exit(2)
        if not workspace.is_dir():
            print(
                f"{ErrorFormatter.RED}✗ Error: Path is not a directory: {workspace}{ErrorFormatter.RESET}"
            )
            sys.exit(2)
