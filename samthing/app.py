"""Command line entry point running the client on asyncio."""

import argparse
import asyncio
import signal
from typing import List, Optional

from . import config
from .client import SamThingClient
from .input.backend import build_input_source
from .logging_config import log, reload_logging
from .settings import SettingsStore, load_manifest_file


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    ap = argparse.ArgumentParser(prog="samthing", description="SamThing device client")
    ap.add_argument("--host", type=str, default="", help="server address (overrides the manifest)")
    ap.add_argument("--port", type=int, default=0, help="server port (overrides the manifest)")
    ap.add_argument("--manifest", type=str, default="", help="JSON manifest merged at start-up")
    ap.add_argument("--input", type=str, default="", choices=["", "auto", "pynput", "null"])
    ap.add_argument("--settings", type=str, default="", help="settings file path")
    ap.add_argument("--debug", action="store_true")
    return ap.parse_args(argv)


def _context_overrides(settings: SettingsStore, host: str, port: int) -> Optional[dict]:
    """Return a manifest patch pointing the context at host/port, or None."""
    if not host and not port:
        return None
    context = dict(settings.manifest.get("context") or {})
    if host:
        context["ip"] = host
    if port:
        context["port"] = int(port)
    return {"context": context}


def _apply_startup_manifest(settings: SettingsStore, args: argparse.Namespace) -> None:
    """Merge the manifest file and host/port flags before the first connect."""
    path = args.manifest or config.MANIFEST_FILE
    extra = load_manifest_file(path)
    if extra:
        log.info("Manifest loaded from %s", path)
        settings.update_manifest(extra)
    patch = _context_overrides(settings, args.host, args.port)
    if patch:
        settings.update_manifest(patch)


async def run_client(args: argparse.Namespace) -> None:
    """Run the client until SIGINT/SIGTERM."""
    settings = SettingsStore(args.settings or config.SETTINGS_FILE)
    settings.load()
    _apply_startup_manifest(settings, args)

    client = SamThingClient(settings, input_source=build_input_source(args.input or None))
    client.start()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handlers; Ctrl+C raises instead.
            pass
    try:
        await stop.wait()
    finally:
        await client.aclose()
        log.info("Client stopped")


def main(argv: Optional[List[str]] = None) -> int:
    """Run the module entrypoint and start the main application flow."""
    args = _parse_args(argv)
    if args.debug:
        config.DEBUG = True
        config.CONSOLE_LOG = True
        config.LOG_ENABLED = True
        reload_logging()
    try:
        asyncio.run(run_client(args))
    except KeyboardInterrupt:
        pass
    return 0
