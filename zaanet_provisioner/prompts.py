"""Interactive operator prompts."""

import logging
from typing import Optional

from rich.console import Console

from .credentials import ProvisioningConfig
from .identity import normalize_mac

logger = logging.getLogger(__name__)


class PromptCancelled(Exception):
    """The operator declined a confirmation."""


class Prompter:
    """Console prompts. Tests pass a console whose ``input`` is scripted."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def ask(self, question: str, default: Optional[str] = None) -> str:
        suffix = f" [{default}]" if default else ""
        answer = self.console.input(f"{question}{suffix}: ").strip()
        return answer or (default or "")

    def ask_required(self, question: str, error: str) -> str:
        while True:
            answer = self.ask(question)
            if answer:
                return answer
            self.console.print(f"[red]{error}[/red]")

    def confirm(self, question: str, default: bool = False) -> bool:
        hint = "y" if default else "n"
        answer = self.console.input(f"{question} (y/n) [{hint}]: ").strip().lower()
        if not answer:
            return default
        return answer.startswith("y")

    def confirm_word(self, question: str, word: str = "yes") -> bool:
        """Destructive confirmation: only the exact word counts."""
        return self.console.input(f"{question} (type '{word}' to confirm): ").strip() == word

    def pause(self, message: str = "Press Enter to continue (or Ctrl+C to cancel if not ready)...") -> None:
        self.console.input(message)

    def ask_mac(self) -> Optional[str]:
        """Manual MAC entry. Empty input skips; invalid input is rejected."""
        self.console.print("Format: aa:bb:cc:dd:ee:ff")
        answer = self.ask("Enter your device MAC address (or press Enter to skip)")
        if not answer:
            logger.info("Skipping admin device whitelisting")
            return None
        mac = normalize_mac(answer)
        if mac is None:
            logger.warning(f"Invalid MAC format, skipping whitelisting: {answer}")
        return mac


def collect_credentials(
    prompter: Prompter,
    router_id: str,
    main_server: str,
    default_ssid: str = "ZaaNet",
    secret_min_length: int = 16,
) -> ProvisioningConfig:
    """Ask for the operator credentials and confirm the summary.

    Raises:
        PromptCancelled: a confirmation was declined.
    """
    console = prompter.console
    console.print("[bold]ZaaNet Configuration[/bold]")

    contract_id = prompter.ask_required("Enter your Contract ID", "Contract ID cannot be empty")

    secret_key = prompter.ask_required("Enter your ZaaNet Secret Key", "Secret key cannot be empty")
    if len(secret_key) < secret_min_length:
        console.print(f"[yellow]Secret key seems short (less than {secret_min_length} characters)[/yellow]")
        if not prompter.confirm("Continue anyway?"):
            raise PromptCancelled("Installation cancelled")

    wifi_ssid = prompter.ask("Enter WiFi SSID", default=default_ssid)

    console.print()
    console.print(f"Router ID:     {router_id}")
    console.print(f"Contract ID:   {contract_id}")
    console.print(f"Main Server:   {main_server}")
    console.print(f"WiFi SSID:     {wifi_ssid}")
    console.print("Secret Key:    [dim]hidden[/dim]")
    console.print()

    if not prompter.confirm("Is this correct?"):
        raise PromptCancelled("Installation cancelled")

    return ProvisioningConfig(
        router_id=router_id,
        contract_id=contract_id,
        secret_key=secret_key,
        main_server=main_server,
        wifi_ssid=wifi_ssid,
    )
