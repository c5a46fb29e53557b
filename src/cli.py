#!/usr/bin/env python3
"""
VoiceCast Command Line Interface.

Provides commands for running and maintaining the VoiceCast services:
    - serve: Start the API server
    - sweep: Retry pending messages and print the report
    - storage-info: Show storage backend and quota usage
    - cleanup: Run a storage cleanup tier by hand
    - check: Verify configuration and backend availability

Usage:
    voicecast serve [--host HOST] [--port PORT] [--debug] [--production]
    voicecast sweep
    voicecast storage-info
    voicecast cleanup {aggressive,emergency} [--yes]
    voicecast check
    voicecast --version
"""

import argparse
import json
import os
import sys

# Ensure src is in path when running from source
if os.path.exists(os.path.join(os.path.dirname(__file__), "escrow.py")):
    sys.path.insert(0, os.path.dirname(__file__))


def _services():
    from api.state import ServiceRegistry
    from config import AppConfig

    return ServiceRegistry.build(AppConfig.from_env())


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_serve(args):
    """Start the VoiceCast API server."""
    from api import create_app
    from config import AppConfig
    from monitoring import configure_logging

    config = AppConfig.from_env()
    configure_logging(level=config.log_level, json_output=config.log_format == "json")

    host = args.host or config.host
    port = args.port or config.port
    debug = args.debug or os.getenv("FLASK_DEBUG", "").lower() == "true"

    print(f"Starting VoiceCast API server on {host}:{port}")
    flask_app = create_app(config)

    if args.production:
        try:
            import gunicorn.app.base
        except ImportError:
            print("Error: gunicorn not installed. Install with: pip install voicecast-services[production]")
            return 1

        class StandaloneApplication(gunicorn.app.base.BaseApplication):
            """Gunicorn WSGI application wrapper for production deployment."""

            def __init__(self, app, options=None):
                self.options = options or {}
                self.application = app
                super().__init__()

            def load_config(self):
                for key, value in self.options.items():
                    if key in self.cfg.settings and value is not None:
                        self.cfg.set(key.lower(), value)

            def load(self):
                return self.application

        options = {
            "bind": f"{host}:{port}",
            "workers": args.workers or int(os.getenv("WORKERS", 4)),
            "worker_class": "sync",
            "timeout": 120,
            "accesslog": "-",
            "errorlog": "-",
        }
        StandaloneApplication(flask_app, options).run()
    else:
        flask_app.run(host=host, port=port, debug=debug)
    return 0


def cmd_sweep(args):
    """Retry every pending message below the retry ceiling."""
    services = _services()
    report = services.pending.sweep()
    _print_json(report.to_dict())
    return 0


def cmd_storage_info(args):
    """Display storage backend information and quota usage."""
    services = _services()
    _print_json({
        "backend": services.store.backend.get_info(),
        "usage": services.store.usage(),
        "keys": sorted(services.store.keys()),
    })
    return 0


def cmd_cleanup(args):
    """Run a cleanup tier against the configured store."""
    if args.tier == "emergency" and not args.yes:
        print("Emergency cleanup deletes everything except identity keys. Re-run with --yes to proceed.")
        return 1

    services = _services()
    if args.tier == "aggressive":
        touched = services.store.aggressive_cleanup()
    else:
        touched = services.store.emergency_cleanup()

    _print_json({"tier": args.tier, "keys": touched, "usage": services.store.usage()})
    return 0


def cmd_check(args):
    """Check configuration and backend availability."""
    from config import AppConfig
    from storage import StorageError, get_storage_backend

    print("VoiceCast Configuration Check")
    print("=" * 40)

    checks = []
    config = AppConfig.from_env()

    try:
        storage = get_storage_backend(config.storage)
        backend_name = storage.__class__.__name__
        status = "OK" if storage.is_available() else "WARN (not available)"
        checks.append((f"Storage ({backend_name})", status))
    except StorageError as e:
        checks.append(("Storage", f"FAIL: {e}"))

    if config.require_auth and not config.api_key:
        checks.append(("API key", "FAIL: VOICECAST_REQUIRE_AUTH is on but VOICECAST_API_KEY is not set"))
    else:
        checks.append(("API key", "OK" if config.api_key else "SKIP (auth disabled)"))

    endpoints = ", ".join(config.messaging.endpoints)
    checks.append((f"Messaging API ({config.messaging.base_url}: {endpoints})", "OK"))

    if len(config.messaging.endpoints) > 1:
        checks.append(("Messaging endpoints", "WARN (more than one endpoint configured)"))

    if config.admin.bootstrap_password:
        checks.append((f"Admin bootstrap ({config.admin.bootstrap_username})", "OK"))
    else:
        checks.append(("Admin bootstrap", "SKIP (ADMIN_BOOTSTRAP_PASSWORD not set)"))

    if not 0 <= config.payment.platform_fee_rate < 1:
        checks.append(("Escrow fee rate", f"FAIL: {config.payment.platform_fee_rate} is not in [0, 1)"))
    else:
        checks.append((f"Escrow fee rate ({config.payment.platform_fee_rate:.2%})", "OK"))

    print()
    all_ok = True
    for name, status in checks:
        icon = "✓" if status == "OK" else ("○" if status.startswith(("SKIP", "WARN")) else "✗")
        print(f"  {icon} {name}: {status}")
        if "FAIL" in status:
            all_ok = False

    print()
    if all_ok:
        print("All checks passed!")
        return 0
    else:
        print("Some checks failed. See above for details.")
        return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="voicecast",
        description="VoiceCast - talent marketplace services",
    )
    parser.add_argument("--version", "-v", action="version", version="%(prog)s 0.1.0")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", help="Host to bind to (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, help="Port to bind to (default: 5000)")
    serve_parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    serve_parser.add_argument(
        "--production", action="store_true", help="Use gunicorn for production"
    )
    serve_parser.add_argument("--workers", type=int, help="Number of workers (production mode)")

    subparsers.add_parser("sweep", help="Retry pending messages")
    subparsers.add_parser("storage-info", help="Show storage usage")

    cleanup_parser = subparsers.add_parser("cleanup", help="Run a storage cleanup tier")
    cleanup_parser.add_argument("tier", choices=["aggressive", "emergency"])
    cleanup_parser.add_argument(
        "--yes", action="store_true", help="Confirm emergency cleanup"
    )

    subparsers.add_parser("check", help="Check configuration")

    return parser


COMMANDS = {
    "serve": cmd_serve,
    "sweep": cmd_sweep,
    "storage-info": cmd_storage_info,
    "cleanup": cmd_cleanup,
    "check": cmd_check,
}


def main(argv: list[str] | None = None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    command = COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        sys.exit(1)
    sys.exit(command(args))


if __name__ == "__main__":
    main()
