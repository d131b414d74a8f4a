"""``trakt-import``: a minimal host around the Trakt import provider.

Settings (client credentials and persisted tokens) live in a flat JSON file;
refreshed tokens are written back to it automatically.
"""

from __future__ import annotations

import argparse
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from trakt_importer.backend.common.cancellation import CancellationToken
from trakt_importer.backend.common.errors import OperationCancelled, ReauthRequired, TraktImportError
from trakt_importer.backend.common.logging import get_logger, init_logging
from trakt_importer.backend.information_handlers.import_provider import (
    KEY_CLIENT_ID,
    KEY_CLIENT_SECRET,
    TraktImportProvider,
)
from trakt_importer.backend.information_handlers.models import DeviceAuthStatus
from trakt_importer.backend.information_handlers.trakt_auth import KEY_EXPIRES_AT
from trakt_importer.config.settings import get_settings

from ._utils import (
    build_subparser,
    exit_with_error,
    load_settings_store,
    print_json,
    require_subcommand,
    save_settings_store,
    to_serializable,
)

log = get_logger(__name__)

_ENV_CREDENTIALS = (
    (KEY_CLIENT_ID, "TRAKT_CLIENT_ID"),
    (KEY_CLIENT_SECRET, "TRAKT_CLIENT_SECRET"),
)

EXIT_PENDING = 2
EXIT_INTERRUPTED = 130


def _settings_path(args: argparse.Namespace) -> Path:
    if getattr(args, "settings_file", None):
        return Path(args.settings_file).expanduser()
    return Path(get_settings().host_settings_path)


def _host_settings(path: Path) -> Dict[str, str]:
    values = load_settings_store(path)
    for key, env_name in _ENV_CREDENTIALS:
        env_value = os.getenv(env_name)
        if not values.get(key) and env_value:
            values[key] = env_value
    return values


def _persist_tokens(path: Path) -> Callable[[Mapping[str, str]], None]:
    def _write(updated: Mapping[str, str]) -> None:
        stored = load_settings_store(path)
        stored.update({k: v for k, v in updated.items() if k not in (KEY_CLIENT_ID, KEY_CLIENT_SECRET)})
        save_settings_store(path, stored)
        log.info("Persisted refreshed Trakt tokens to %s", path)

    return _write


def _open_provider(args: argparse.Namespace) -> TraktImportProvider:
    path = _settings_path(args)
    provider = TraktImportProvider(on_settings_changed=_persist_tokens(path))
    provider.configure(_host_settings(path))
    return provider


def _parse_since(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid ISO-8601 timestamp '{value}'") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------- handlers ----------------

def _handle_capabilities(args: argparse.Namespace, provider: TraktImportProvider) -> None:
    print_json(to_serializable(provider.capabilities()))


def _handle_auth_start(args: argparse.Namespace, provider: TraktImportProvider) -> None:
    start = provider.start_auth()
    print_json(to_serializable(start))


def _handle_auth_poll(args: argparse.Namespace, provider: TraktImportProvider) -> None:
    cancel = CancellationToken()
    interval = max(1, int(args.interval))
    while True:
        result = provider.poll_auth(args.poll_code, cancel=cancel)
        if not result.should_retry or not args.wait:
            break
        interval = result.retry_interval or interval
        log.debug("Waiting %s seconds before next Trakt device poll", interval)
        cancel.sleep(interval)

    payload: Dict[str, Any] = {
        "status": result.status.value,
        "error_message": result.error_message,
        "retry_interval": result.retry_interval,
        "should_retry": result.should_retry,
    }
    print_json(payload)
    if result.status == DeviceAuthStatus.AUTHORIZED:
        return
    raise SystemExit(EXIT_PENDING if result.should_retry else 1)


def _handle_auth_status(args: argparse.Namespace, provider: TraktImportProvider) -> None:
    values = provider.current_settings()
    expires_at: Optional[int] = None
    raw_expiry = values.get(KEY_EXPIRES_AT)
    if raw_expiry and raw_expiry.isdigit() and int(raw_expiry) > 0:
        expires_at = int(raw_expiry)

    print_json(
        {
            "authenticated": provider.is_authenticated(),
            "has_refresh_token": bool(values.get("refresh_token")),
            "expires_at": expires_at,
            "expires_at_iso": datetime.fromtimestamp(expires_at, tz=timezone.utc).isoformat()
            if expires_at is not None
            else None,
        }
    )


def _handle_health(args: argparse.Namespace, provider: TraktImportProvider) -> None:
    healthy = provider.health_check()
    print_json({"healthy": healthy})
    if not healthy:
        raise SystemExit(1)


def _handle_import_history(args: argparse.Namespace, provider: TraktImportProvider) -> None:
    print_json(to_serializable(provider.get_watch_history(args.since)))


def _handle_import_ratings(args: argparse.Namespace, provider: TraktImportProvider) -> None:
    print_json(to_serializable(provider.get_ratings()))


def _handle_import_watchlist(args: argparse.Namespace, provider: TraktImportProvider) -> None:
    print_json(to_serializable(provider.get_watchlist()))


# ---------------- parser ----------------

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="trakt-import", description="Import Trakt history, ratings and watchlist.")
    parser.add_argument("--settings-file", help="JSON settings store (defaults to the configured host settings path).")
    parser.add_argument("--log-level", help="Override the configured log level.")

    subparsers = parser.add_subparsers(dest="command")
    require_subcommand(subparsers)

    capabilities = build_subparser(subparsers, "capabilities", help="Show what this provider can import.")
    capabilities.set_defaults(func=_handle_capabilities)

    auth = build_subparser(subparsers, "auth", help="Run the OAuth device authorization flow.")
    auth_sub = auth.add_subparsers(dest="auth_command")
    require_subcommand(auth_sub)

    auth_start = build_subparser(auth_sub, "start", help="Request a device code and show the user code.")
    auth_start.set_defaults(func=_handle_auth_start)

    auth_poll = build_subparser(auth_sub, "poll", help="Poll once (or until resolved) for the access token.")
    auth_poll.add_argument("poll_code", help="Poll code returned by 'auth start'.")
    auth_poll.add_argument("--wait", action="store_true", help="Keep polling until the flow resolves.")
    auth_poll.add_argument("--interval", type=int, default=5, help="Seconds between polls when waiting.")
    auth_poll.set_defaults(func=_handle_auth_poll)

    auth_status = build_subparser(auth_sub, "status", help="Show whether a usable token is stored.")
    auth_status.set_defaults(func=_handle_auth_status)

    health = build_subparser(subparsers, "health", help="Check that Trakt accepts the stored token.")
    health.set_defaults(func=_handle_health)

    imports = build_subparser(subparsers, "import", help="Fetch and normalize Trakt collections.")
    imports_sub = imports.add_subparsers(dest="import_command")
    require_subcommand(imports_sub)

    history = build_subparser(imports_sub, "history", help="Import the full watch history.")
    history.add_argument("--since", type=_parse_since, help="Only include plays at or after this ISO-8601 time.")
    history.set_defaults(func=_handle_import_history)

    ratings = build_subparser(imports_sub, "ratings", help="Import ratings.")
    ratings.set_defaults(func=_handle_import_ratings)

    watchlist = build_subparser(imports_sub, "watchlist", help="Import the watchlist.")
    watchlist.set_defaults(func=_handle_import_watchlist)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    init_logging(args.log_level or get_settings().log_level)

    handler = getattr(args, "func", None)
    if handler is None:
        parser.print_help()
        return

    provider = _open_provider(args)
    try:
        handler(args, provider)
    except ReauthRequired as exc:
        print_json(exc.payload)
        exit_with_error(str(exc))
    except OperationCancelled:
        exit_with_error("Interrupted", code=EXIT_INTERRUPTED)
    except KeyboardInterrupt:
        exit_with_error("Interrupted", code=EXIT_INTERRUPTED)
    except TraktImportError as exc:
        exit_with_error(str(exc))
    finally:
        provider.close()


if __name__ == "__main__":  # pragma: no cover
    main()
