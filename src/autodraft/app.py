"""Command line entry point: autosave a JSON draft file to the document store."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .drafts.source import DraftSourceError, load_snapshot, watch_snapshots
from .services.autosave import AutosaveConfig, AutosaveState, DocumentStore
from .services.document_store import DocumentStoreClient, StoreSettings
from .services.permissions import UnknownRoleError, parse_role
from .services.resume_store import ResumePointerStore, ResumeStore
from .services.session import DraftSession, PermissionDeniedError
from .services.settings import SETTINGS_DIR, Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)


def configure_logging(
    debug: bool = False,
    *,
    log_dir: Path | str | None = None,
    force: bool = False,
) -> Path:
    """Log to a rotating file next to the settings (or ``log_dir``) and to stderr."""

    target = logging_utils.resolve_log_dir(SETTINGS_DIR, log_dir)
    log_path = logging_utils.setup_logging(target, debug=debug, force=force)
    _LOGGER.debug("Logging to %s (debug=%s)", log_path, debug)
    return log_path


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except OSError as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


def build_session(
    settings: Settings,
    *,
    store: DocumentStore,
    resume_store: ResumeStore | None = None,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
) -> DraftSession:
    """Wire a :class:`DraftSession` whose callbacks report to the terminal."""

    out = stdout or sys.stdout
    err = stderr or sys.stderr

    def _report_saved(identity: str) -> None:
        out.write(f"Autosaved draft {identity}\n")
        out.flush()

    def _report_error(exc: BaseException) -> None:
        err.write(f"Autosave failed: {exc}\n")
        err.flush()

    return DraftSession(
        store,
        role=settings.role,
        resume_store=resume_store or ResumePointerStore(settings.resume_path),
        resume_slot=settings.resume_slot,
        config=AutosaveConfig(debounce_seconds=settings.debounce_seconds),
        on_saved=_report_saved,
        on_error=_report_error,
    )


async def run_autosave(
    settings: Settings,
    draft_path: Path,
    *,
    once: bool = False,
    store: DocumentStore | None = None,
    resume_store: ResumeStore | None = None,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
) -> DraftSession:
    """Autosave ``draft_path`` until cancelled (or a single time with ``once``)."""

    client: DocumentStoreClient | None = None
    if store is None:
        client = DocumentStoreClient(StoreSettings.from_settings(settings))
        store = client
    session = build_session(
        settings, store=store, resume_store=resume_store, stdout=stdout, stderr=stderr
    )
    session.start()
    detach_event_log = logging_utils.log_autosave_events()
    try:
        if once:
            await session.save_now(load_snapshot(draft_path))
        else:
            _LOGGER.info("Watching %s (debounce %.2fs)", draft_path, settings.debounce_seconds)
            async for snapshot in watch_snapshots(draft_path, poll_interval=settings.poll_interval):
                session.update(snapshot)
    finally:
        await session.close(flush=not once)
        detach_event_log()
        if client is not None:
            await client.aclose()
    return session


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the `autodraft` console script."""

    args = _parse_cli_args(argv)

    debug = _env_flag("AUTODRAFT_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("AUTODRAFT_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc
    if args.role:
        cli_overrides["role"] = args.role

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    try:
        parse_role(settings.role)
    except UnknownRoleError as exc:
        print(str(exc), file=sys.stderr)
        raise SystemExit(2) from exc

    if not args.draft_file:
        print("A draft file is required unless --dump-settings is used.", file=sys.stderr)
        raise SystemExit(2)

    draft_path = Path(args.draft_file).expanduser()
    try:
        session = asyncio.run(run_autosave(settings, draft_path, once=args.once))
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")
        return
    except (DraftSourceError, FileNotFoundError, PermissionDeniedError) as exc:
        print(str(exc), file=sys.stderr)
        raise SystemExit(1) from exc
    if session.controller.state is AutosaveState.FAILED:
        raise SystemExit(1)


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="autodraft",
        description="Keep a remote draft in sync with a local JSON draft file.",
    )
    parser.add_argument("draft_file", nargs="?", metavar="DRAFT_FILE", help="JSON file holding the draft fields.")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Save the current file contents immediately and exit instead of watching.",
    )
    parser.add_argument("--role", metavar="ROLE", help="Role used for permission checks (admin, editor, contributor).")
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.autodraft/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if normalized.lower() in {"none", "null"} and _is_optional(annotation):
        return None
    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target is dict:
        try:
            value = json.loads(normalized or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Dict overrides must be valid JSON objects") from exc
        if not isinstance(value, dict):
            raise ValueError("Dict overrides must be valid JSON objects")
        return value
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in {list, dict}:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return args[0]


def _is_optional(annotation: Any) -> bool:
    return type(None) in get_args(annotation)


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    payload["api_token"] = redact_secret(settings.api_token)
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.strategy,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("AUTODRAFT_"))


if __name__ == "__main__":  # pragma: no cover - manual invocation
    main()
