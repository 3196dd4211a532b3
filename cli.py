"""
CLI for StoreSync.
Run syncs, manage connections, or start the server from command line.
"""

import sys
import time
import argparse
from pathlib import Path

# Add project to path
project_root = Path(__file__).resolve().parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

DEFAULT_API = "http://localhost:8000"


def _setup():
    from storesync.core.config import get_config
    from storesync.core.logging import setup_logging

    config = get_config()
    setup_logging(config.log_path, config.log_level)
    return config


def _print_report(report):
    print(f"   Mode: {report.mode}")
    print(f"   Duration: {report.duration}s")
    for entity in ('catalog', 'transactions', 'accounts'):
        result = report.result_for(entity)
        line = (f"   {entity.capitalize():<13} fetched={result.fetched} created={result.created} "
                f"updated={result.updated} errors={result.error_count}")
        if result.error:
            line += f"  FAILED: {result.error}"
        print(line)
    extra = report.accounts.extra
    if extra:
        print(f"   Guests: {extra.get('guests_created', 0)} created, {extra.get('guests_updated', 0)} updated")


def cmd_sync(args):
    """Run a sync for one connection."""
    if args.api:
        import requests

        response = requests.post(
            f"{args.api.rstrip('/')}/api/sync/{args.connection_id}",
            params={'full': 'true'} if args.full else None,
            timeout=30
        )
        if not response.ok:
            print(f"[ERROR] {response.status_code}: {response.json().get('detail', response.text)}")
            sys.exit(1)
        print(f"[SYNC] {response.json()['message']}")
        if args.watch:
            _watch(args.api, args.connection_id, args.interval)
        return

    from storesync.core.crypto import load_vault
    from storesync.core.database import get_database
    from storesync.core.exceptions import ConfigurationError
    from storesync.sync.orchestrator import SyncOrchestrator
    from storesync.sync.settings import SyncSettings

    config = _setup()

    kind = "full resync" if args.full else "sync"
    print(f"[SYNC] Starting {kind} for connection {args.connection_id}...")

    def show_progress(progress, message):
        print(f"   [{progress:>3}%] {message}")

    try:
        orchestrator = SyncOrchestrator(get_database(), load_vault(), SyncSettings.from_config(config))
        report = orchestrator.run(args.connection_id, progress_callback=show_progress, full=args.full)
    except ConfigurationError as e:
        print(f"[ERROR] {e}")
        sys.exit(1)

    if report.failed_entities:
        print(f"\n[ERROR] Sync finished with failures: {'; '.join(report.errors)}")
    else:
        print(f"\n[OK] Sync complete!")
    _print_report(report)
    if report.failed_entities:
        sys.exit(1)


def _watch(api, connection_id, interval):
    import requests

    url = f"{api.rstrip('/')}/api/sync/{connection_id}/status"
    while True:
        status = requests.get(url, timeout=10).json()
        print(f"   [{status['progress']:>3}%] {status['status']}: {status['message']}")
        if status['status'] != 'running':
            return status
        time.sleep(interval)


def cmd_status(args):
    """Show sync progress from a running API server."""
    import requests

    if args.watch:
        _watch(args.api, args.connection_id, args.interval)
        return

    response = requests.get(f"{args.api.rstrip('/')}/api/sync/{args.connection_id}/status", timeout=10)
    response.raise_for_status()
    status = response.json()
    print(f"[STATUS] {args.connection_id}: {status['status']} ({status['progress']}%)")
    print(f"   {status['message']}")
    if status.get('error'):
        print(f"   Error: {status['error']}")


def cmd_detect_prefix(args):
    """Detect the WordPress table prefix of a database."""
    from storesync.core.exceptions import PrefixNotFoundError, TransportError
    from storesync.sync.discovery import discover_prefix
    from storesync.sync.models import DatastoreCredentials

    config = _setup()

    credentials = DatastoreCredentials(
        host=args.host,
        user=args.user,
        password=args.password,
        database=args.database,
        port=args.port
    )
    try:
        result = discover_prefix(
            credentials,
            connect_timeout=config.get_int('direct_datastore', 'connect_timeout', default=10)
        )
    except (PrefixNotFoundError, TransportError) as e:
        print(f"[ERROR] {e}")
        sys.exit(1)

    print(f"[OK] Detected prefix: {result.prefix}")
    print(f"   WooCommerce tables: {'yes' if result.has_commerce_tables else 'no'}")
    if result.alternatives:
        print(f"   Alternatives: {', '.join(result.alternatives)}")


def cmd_test_connection(args):
    """Check REST API credentials against a store."""
    from storesync.core.exceptions import ConfigurationError, TransportError
    from storesync.sync.connectivity import check_api_connection
    from storesync.sync.models import ApiCredentials
    from storesync.sync.settings import SyncSettings

    config = _setup()

    print(f"[TEST] Connecting to {args.url}...")
    try:
        credentials = ApiCredentials.from_dict({
            'url': args.url,
            'consumer_key': args.consumer_key,
            'consumer_secret': args.consumer_secret,
        })
        result = check_api_connection(credentials, SyncSettings.from_config(config))
    except (ConfigurationError, TransportError) as e:
        print(f"[ERROR] Connection test failed: {e}")
        sys.exit(1)

    print(f"[OK] Connection test successful ({result.products_found} product(s) on the first page)")


def cmd_connections_import(args):
    """Store the connections listed in config.yaml, encrypting credentials."""
    from storesync.core.crypto import load_vault
    from storesync.core.database import get_database
    from storesync.core.exceptions import ConfigurationError
    from storesync.sync.models import ApiCredentials, DatastoreCredentials, TransportMode

    config = _setup()
    db = get_database()

    entries = config.connection_entries
    if not entries:
        print("[CONNECTIONS] No connections in config.yaml")
        return

    try:
        vault = load_vault()
    except ConfigurationError as e:
        print(f"[ERROR] {e}")
        sys.exit(1)

    validators = {
        TransportMode.REMOTE_API.value: ApiCredentials.from_dict,
        TransportMode.DIRECT_DATASTORE.value: DatastoreCredentials.from_dict,
    }

    for entry in entries:
        connection_id = str(entry.get('id', ''))
        mode = entry.get('mode', TransportMode.REMOTE_API.value)
        credentials = entry.get('credentials') or {}
        try:
            if not connection_id:
                raise ConfigurationError("Connection entry has no id")
            if mode not in validators:
                raise ConfigurationError(f"Unknown mode {mode!r}")
            validators[mode](credentials)
        except ConfigurationError as e:
            print(f"[SKIP] {connection_id or '?'}: {e}")
            continue

        payload = vault.encrypt_credentials(connection_id, credentials)
        created = db.save_connection(connection_id, entry.get('name') or connection_id, mode, payload)
        print(f"[OK] {'Added' if created else 'Updated'} connection {connection_id} ({mode})")


def cmd_connections_list(args):
    """List stored connections."""
    from storesync.core.database import get_database

    _setup()
    connections = get_database().list_connections()
    if not connections:
        print("[CONNECTIONS] None stored. Run `python cli.py connections import` first.")
        return

    for conn in connections:
        print(f"   {conn['id']:<20} {conn['mode']:<17} {conn['name']}")
        for entity in ('catalog', 'transactions', 'accounts'):
            print(f"      {entity} cursor: {conn[f'{entity}_cursor'] or '-'}")


def cmd_keygen(args):
    """Print a fresh data key."""
    from storesync.core.crypto import generate_key, KEY_ENV_VAR

    print(generate_key())
    print(f"# Set it as {KEY_ENV_VAR} or security.data_key in config.yaml", file=sys.stderr)


def cmd_serve(args):
    """Start the API server."""
    import uvicorn

    print(f"[SERVER] Starting API server on http://{args.host}:{args.port}")
    print(f"   Docs: http://{args.host}:{args.port}/docs")

    uvicorn.run(
        "storesync.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload
    )


def main():
    parser = argparse.ArgumentParser(
        description="StoreSync CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python cli.py keygen
  python cli.py connections import
  python cli.py sync main-store
  python cli.py sync main-store --full
  python cli.py sync main-store --api http://localhost:8000 --watch
  python cli.py test-connection --url https://shop.example.com --consumer-key ck_... --consumer-secret cs_...
  python cli.py detect-prefix --host db.example.com --user wp --password secret --database wordpress
  python cli.py serve
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Sync command
    sync_parser = subparsers.add_parser("sync", help="Sync one connection")
    sync_parser.add_argument("connection_id", help="Connection id")
    sync_parser.add_argument("--api", type=str, default=None,
                             help="Start the sync on a running API server instead of in this process")
    sync_parser.add_argument("--watch", action="store_true", help="With --api, poll until the sync ends")
    sync_parser.add_argument("--interval", type=float, default=2.0, help="Polling interval in seconds")
    sync_parser.add_argument("--full", action="store_true", help="Ignore stored cursors and resync everything")

    # Status command
    status_parser = subparsers.add_parser("status", help="Show sync progress from the API server")
    status_parser.add_argument("connection_id", help="Connection id")
    status_parser.add_argument("--api", type=str, default=DEFAULT_API, help="API server base URL")
    status_parser.add_argument("--watch", action="store_true", help="Poll until the sync ends")
    status_parser.add_argument("--interval", type=float, default=2.0, help="Polling interval in seconds")

    # Detect prefix command
    detect_parser = subparsers.add_parser("detect-prefix", help="Detect a WordPress table prefix")
    detect_parser.add_argument("--host", type=str, required=True, help="Database host")
    detect_parser.add_argument("--port", type=int, default=3306, help="Database port")
    detect_parser.add_argument("--user", type=str, required=True, help="Database user")
    detect_parser.add_argument("--password", type=str, required=True, help="Database password")
    detect_parser.add_argument("--database", type=str, required=True, help="Database name")

    # Test connection command
    test_parser = subparsers.add_parser("test-connection", help="Check REST API credentials")
    test_parser.add_argument("--url", type=str, required=True, help="Store URL")
    test_parser.add_argument("--consumer-key", type=str, required=True, help="WooCommerce consumer key")
    test_parser.add_argument("--consumer-secret", type=str, required=True, help="WooCommerce consumer secret")

    # Connections command
    connections_parser = subparsers.add_parser("connections", help="Connection commands")
    connections_subparsers = connections_parser.add_subparsers(dest="connections_command")
    connections_subparsers.add_parser("import", help="Store connections from config.yaml")
    connections_subparsers.add_parser("list", help="List stored connections")

    # Keygen command
    subparsers.add_parser("keygen", help="Generate a credential encryption key")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Start API server")
    serve_parser.add_argument("--host", type=str, default="0.0.0.0", help="Host to bind")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to listen on")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    args = parser.parse_args()

    if args.command == "sync":
        cmd_sync(args)
    elif args.command == "status":
        cmd_status(args)
    elif args.command == "detect-prefix":
        cmd_detect_prefix(args)
    elif args.command == "test-connection":
        cmd_test_connection(args)
    elif args.command == "connections":
        if args.connections_command == "import":
            cmd_connections_import(args)
        elif args.connections_command == "list":
            cmd_connections_list(args)
        else:
            connections_parser.print_help()
    elif args.command == "keygen":
        cmd_keygen(args)
    elif args.command == "serve":
        cmd_serve(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
