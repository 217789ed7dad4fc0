"""
Interactive admin console.

A tiny stdin menu that runs next to the server when started with
``--console``:

    Server Commands:
    1. Show connected clients
    2. Shut down server

Option 2 triggers the same graceful shutdown as Ctrl+C.
"""

import logging
import sys
import threading
from typing import Optional, TextIO

from .server import CalcServer


logger = logging.getLogger(__name__)

MENU = (
    "\nServer Commands:\n"
    "1. Show connected clients\n"
    "2. Shut down server\n"
    "Enter command (1-2): "
)


class AdminConsole:
    """
    Reads admin commands from a text stream and acts on a CalcServer.

    Accepts "1" / "list" and "2" / "exit" / "shutdown". Stops on end of
    input or after a shutdown command.
    """

    def __init__(
        self,
        server: CalcServer,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
    ):
        self.server = server
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout

    def print_clients(self):
        """Print every joined client, one per line."""
        clients = self.server.list_clients()
        self._write("\nConnected Clients:\n")
        if not clients:
            self._write("No clients\n")
            return
        for client in clients:
            self._write(f"{client}\n")

    def handle(self, command: str) -> bool:
        """
        Execute one command.

        Returns:
            False once the console should stop.
        """
        command = command.strip().lower()

        if command in ("1", "list"):
            self.print_clients()
            return True

        if command in ("2", "exit", "shutdown"):
            self._write("Shutting down server...\n")
            self.server.shutdown()
            return False

        if command:
            self._write("Invalid command\n")
        return True

    def run(self):
        """Menu loop. Returns on shutdown or end of input."""
        while True:
            self._write(MENU)
            line = self.stdin.readline()
            if not line:
                logger.debug("Admin console input closed")
                return
            if not self.handle(line):
                return

    def start(self) -> threading.Thread:
        """Run the menu loop on a daemon thread."""
        thread = threading.Thread(target=self.run, name="AdminConsole", daemon=True)
        thread.start()
        return thread

    def _write(self, text: str):
        self.stdout.write(text)
        self.stdout.flush()
