"""Interactive command loop for the investigator."""

import logging
from typing import Tuple

from rich.console import Console
from rich.prompt import Confirm, Prompt

from .agent import InvestigatorAgent
from .services.formatting import RULE, format_verbose
from .settings import SettingsStore

logger = logging.getLogger(__name__)


HELP_TEXT = """
Available Commands:
  appinsight <id>, ai <id>  - Set App Insights application ID
  session <id>, s <id>      - Load session for investigation
  investigate <text>, inv   - Start investigation with complaint
  query <kql>, q <kql>      - Execute custom KQL query
  recent [n], r [n]         - Show the most recent events
  config api-key <key>      - Set App Insights API key
  config llm-key <key>      - Set LLM API key
  config llm-url <url>      - Set LLM base URL (default: OpenAI)
  config llm-model <model>  - Set LLM model
  config resource-group <g> - Set Azure resource group
  config reset              - Reset all stored settings
  status, st                - Show current configuration
  clear, c                  - Clear conversation context
  help, h, ?                - Show this help
  quit, exit                - Exit the application

For conversational queries, just type your message.
"""

CONFIG_SETTINGS = {
    "api-key": ("app_insights_api_key", "App Insights API key configured."),
    "llm-key": ("llm_api_key", "LLM API key configured."),
    "llm-url": ("llm_base_url", "LLM base URL set to: {value}"),
    "llm-model": ("llm_model", "LLM model set to: {value}"),
    "resource-group": ("current_resource_group", "Resource group set to: {value}"),
}


def parse_command(text: str) -> Tuple[str, str]:
    """Split input into a lower-cased command word and the remaining arguments."""
    trimmed = text.strip()
    command, _, args = trimmed.partition(" ")
    return command.lower(), args.strip()


def _truncate(value: str, width: int) -> str:
    return value[:width] + ("..." if len(value) > width else "")


class InvestigatorShell:
    """Reads commands from the operator and dispatches them to the agent."""

    def __init__(
        self,
        store: SettingsStore,
        agent: InvestigatorAgent | None = None,
        console: Console | None = None,
    ) -> None:
        self.store = store
        self.console = console or Console()
        self.agent = agent or InvestigatorAgent(store, query_listener=self._show_query)

    def _say(self, text: str = "") -> None:
        # Model and backend text may contain square brackets; never treat it as markup.
        self.console.print(text, markup=False, highlight=False)

    def _show_query(self, query: str) -> None:
        self._say("\n[Agent executing query...]")
        self._say(RULE * 40)
        self._say(query)
        self._say(RULE * 40)

    def print_header(self) -> None:
        self._say("\n" + "═" * 60)
        self.console.print("  [bold]App Insight Investigator[/bold] - LLM-Powered Telemetry Analysis")
        self._say("═" * 60 + "\n")

    def print_help(self) -> None:
        self._say(HELP_TEXT)

    def print_status(self) -> None:
        app_id = self.store.settings.current_app_id
        status = f"[App: {_truncate(app_id, 15)}]" if app_id else "[App: not set]"
        session_id = self.agent.current_session_id
        if session_id:
            status += f" [Session: {_truncate(session_id, 12)}]"
            status += f" [Events: {self.agent.event_count}]"
        self._say("\n" + status)

    def print_config_status(self) -> None:
        settings = self.store.settings

        def flag(name: str) -> str:
            return "[configured]" if self.store.has(name) else "[not set]"

        self._say("\nConfiguration Status:")
        self._say(RULE * 50)
        self._say(f"  App Insights API Key: {flag('app_insights_api_key')}")
        self._say(f"  LLM API Key:      {flag('llm_api_key')}")
        self._say(f"  LLM Base URL:     {settings.llm_base_url}")
        self._say(f"  LLM Model:        {settings.llm_model}")
        self._say(f"  Current App ID:   {settings.current_app_id or '[not set]'}")
        self._say(f"  Resource Group:   {settings.current_resource_group or '[not set]'}")
        self._say(f"  Active Session:   {self.agent.current_session_id or '[none]'}")
        self._say(RULE * 50)

    async def load_session(self, session_id: str) -> None:
        self._say(f"\nLoading session {session_id}...")
        result = await self.agent.set_session(session_id)
        if result.success:
            self.store.set("last_session_id", session_id)
            self._say(f"Session loaded with {result.event_count} event(s).")
        else:
            self._say(f"Failed to load session: {result.error}")

    async def handle_command(self, text: str) -> bool:
        """Run one line of input. Returns False when the shell should exit."""
        command, args = parse_command(text)

        if command == "":
            return True

        if command in ("appinsight", "ai"):
            if not args:
                self._say("\nUsage: appinsight <app-id>")
                self._say("Example: appinsight 12345678-abcd-efgh-ijkl-mnopqrstuvwx")
            else:
                self.store.set("current_app_id", args)
                self._say(f"\nApp Insights application set: {args}")

        elif command in ("session", "s"):
            if not args:
                self._say("\nUsage: session <session-id>")
                self._say("Example: session +BEDYlOz6f/KD/zyH1SUql")
            else:
                await self.load_session(args)

        elif command in ("investigate", "inv"):
            complaint = args
            while not complaint:
                complaint = Prompt.ask("Enter user complaint", console=self.console).strip()
            self._say("\nInvestigating...\n")
            self._say(await self.agent.investigate(complaint))

        elif command in ("query", "q"):
            if not args:
                self._say("\nUsage: query <kql-query>")
                self._say("Example: query customEvents | take 10")
            else:
                self._say("\nExecuting query...\n")
                result = await self.agent.execute_custom_query(args)
                if result.success and result.result is not None:
                    self._say(format_verbose(result.result))
                else:
                    self._say(f"Query failed: {result.error}")

        elif command in ("recent", "r"):
            limit = None
            if args:
                if not args.isdigit() or int(args) < 1:
                    self._say("\nUsage: recent [count]")
                    return True
                limit = int(args)
            self._say("\nFetching recent events...\n")
            result = await self.agent.recent_events(limit)
            if result.success and result.result is not None:
                self._say(format_verbose(result.result))
            else:
                self._say(f"Query failed: {result.error}")

        elif command == "config":
            self.handle_config(args)

        elif command in ("status", "st"):
            self.print_config_status()

        elif command in ("clear", "c"):
            self.agent.clear_context()
            self._say("\nConversation context cleared.")

        elif command in ("help", "h", "?"):
            self.print_help()

        elif command in ("quit", "exit"):
            self._say("\nGoodbye!")
            return False

        else:
            self._say("\nThinking...\n")
            self._say(await self.agent.chat(text.strip()))

        return True

    def handle_config(self, args: str) -> None:
        if not args:
            self._say("\nUsage: config <setting> <value>")
            self._say("Settings: " + ", ".join(CONFIG_SETTINGS) + ", reset")
            return

        setting, _, value = args.partition(" ")
        setting = setting.lower()
        value = value.strip()

        if setting == "reset":
            self.store.clear()
            self._say("\nAll stored settings reset to defaults.")
            return

        if setting not in CONFIG_SETTINGS:
            self._say(f"\nUnknown setting: {setting}")
            self._say("Available: " + ", ".join(CONFIG_SETTINGS))
            return

        if not value:
            self._say(f"\nUsage: config {setting} <value>")
            return

        name, confirmation = CONFIG_SETTINGS[setting]
        self.store.set(name, value)
        self._say("\n" + confirmation.format(value=value))

    def ensure_authentication(self) -> None:
        if not self.store.has("app_insights_api_key"):
            self._say("App Insights API key not configured.")
            key = self._ask_required("Enter your App Insights API key", password=True)
            self.store.set("app_insights_api_key", key)
            self._say("App Insights API key saved.\n")

        if not self.store.has("llm_api_key"):
            self._say("LLM API key not configured.")
            key = self._ask_required("Enter your LLM API key (OpenAI or compatible)", password=True)
            self.store.set("llm_api_key", key)
            self._say("LLM API key saved.\n")

    def prompt_for_app_id(self) -> str:
        current = self.store.settings.current_app_id
        if current and Confirm.ask(
            f"Use previous App Insights ID ({current})?", default=True, console=self.console
        ):
            return current

        app_id = self._ask_required("Enter App Insights Application ID")
        self.store.set("current_app_id", app_id)
        return app_id

    def _ask_required(self, prompt: str, password: bool = False) -> str:
        while True:
            value = Prompt.ask(prompt, password=password, console=self.console).strip()
            if value:
                return value
            self._say("A value is required.")

    async def restore_last_session(self) -> None:
        last = self.store.settings.last_session_id
        if not last:
            return
        if Confirm.ask(
            f"Restore previous session ({_truncate(last, 20)})?", default=False, console=self.console
        ):
            await self.load_session(last)

    async def run(self) -> None:
        self.print_header()
        self.ensure_authentication()
        app_id = self.prompt_for_app_id()
        self._say(f"\nUsing App Insights: {app_id}")
        await self.restore_last_session()
        self.print_help()

        running = True
        while running:
            self.print_status()
            try:
                text = Prompt.ask(">", console=self.console)
            except (EOFError, KeyboardInterrupt):
                self._say("\nGoodbye!")
                break

            try:
                running = await self.handle_command(text)
            except Exception as e:
                logger.exception("Command failed: %s", e)
                self._say(f"\nError: {e}")
