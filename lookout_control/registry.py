"""
CommandRegistry - named control commands for the inference bridge

Bounded Context: Command registration and dispatch
Responsibilities:
  - Map command names (start, stop, set_setting, health) to handlers
  - Reject unknown commands with the list of known ones
  - Describe registered commands for help output

Handlers take the full command payload (a dict) and may return a result,
which execute() passes back to the caller.

Threading: registration is locked; dispatch reads a snapshot of the table.
"""

import threading
from typing import Any, Callable, Dict, Optional, Set

CommandHandler = Callable[[Dict[str, Any]], Any]


class CommandNotAvailableError(Exception):
    """Raised when a command name has no registered handler"""
    pass


class CommandRegistry:
    """
    Table of control-plane commands.

    Example:
        registry = CommandRegistry()
        registry.register("stop", lambda data: coordinator.stop(), "Stop both streams")

        try:
            registry.execute("stop", {"command": "stop"})
        except CommandNotAvailableError as e:
            logger.warning(e)
    """

    def __init__(self):
        self._handlers: Dict[str, CommandHandler] = {}
        self._descriptions: Dict[str, str] = {}
        self._lock = threading.Lock()

    def register(self, command: str, handler: CommandHandler, description: str) -> None:
        """
        Add a command.

        Raises:
            ValueError: If the name is empty or already taken
        """
        name = command.strip().lower()
        if not name:
            raise ValueError("Command name cannot be empty")

        with self._lock:
            if name in self._handlers:
                raise ValueError(f"Command '{name}' already registered")

            self._handlers[name] = handler
            self._descriptions[name] = description

    def execute(self, command: str, command_data: Optional[Dict[str, Any]] = None) -> Any:
        """
        Run the handler for `command` with the command payload.

        Raises:
            CommandNotAvailableError: If command not registered
        """
        handler = self._handlers.get(command)
        if handler is None:
            raise CommandNotAvailableError(
                f"Command '{command}' not available. "
                f"Available commands: {', '.join(sorted(self.available_commands))}"
            )

        return handler(command_data if command_data is not None else {})

    def is_available(self, command: str) -> bool:
        return command in self._handlers

    @property
    def available_commands(self) -> Set[str]:
        return set(self._handlers)

    def get_help(self) -> Dict[str, str]:
        """Command name → description (snapshot)."""
        return dict(self._descriptions)

    def __len__(self) -> int:
        return len(self._handlers)
