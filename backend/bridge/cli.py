# bridge/cli.py
import sys
import click
from colorama import Fore
from flask import current_app

from .errors import BridgeError
from .extensions import db
from .protocols import Protocol, get_adapter


def _print_failure(err):
    click.echo(Fore.RED + "\n✗ Connection failed!\n")
    click.echo(f"Error: {err.message}\n")
    if err.possible_causes:
        click.echo("Possible causes:")
        for cause in err.possible_causes:
            click.echo(f"  - {cause}")
        click.echo("")
    if err.troubleshooting:
        click.echo("Try these:")
        for step in err.troubleshooting:
            click.echo(f"  - {step}")
        click.echo("")


def register_cli(app):

    @app.cli.command("test-connection")
    @click.argument("ip")
    @click.argument("port", type=int, default=4370)
    @click.option("--timeout", type=int, default=None, help="Connect timeout in seconds.")
    def test_connection(ip, port, timeout):
        """Step through connect / info / users / records against one terminal."""
        pool = current_app.extensions["biometric_bridge"].pool
        timeout = timeout or current_app.config.get("DEVICE_TIMEOUT", 10)
        click.echo("\n=== ZKTeco Connection Test ===\n")
        click.echo(f"Testing connection to: {ip}:{port}")
        click.echo(f"Timeout: {timeout} seconds\n")
        click.echo("Step 1: Creating socket connection...")
        try:
            with pool.session(ip, port, timeout) as session:
                click.echo(Fore.GREEN + "✓ Socket connected successfully\n")
                adapter = get_adapter(Protocol.ZKTECO, session)

                click.echo("Step 2: Getting device information...")
                info = adapter.get_info()
                for label, value in (("Model", info.model), ("Serial Number", info.serial_number),
                                     ("Firmware", info.firmware), ("Platform", info.platform),
                                     ("Device Name", info.device_name)):
                    click.echo(f"  {label}: {value or 'Unknown'}")
                click.echo("")

                click.echo("Step 3: Getting user count...")
                click.echo(Fore.GREEN + f"✓ Found {adapter.get_user_count()} enrolled users\n")

                click.echo("Step 4: Getting attendance records...")
                click.echo(Fore.GREEN + f"✓ Found {adapter.get_attendance_count()} attendance records\n")
        except BridgeError as e:
            _print_failure(e)
            sys.exit(1)

        click.echo(Fore.GREEN + "=== Test Result: SUCCESS ===\n")
        click.echo("Next steps:")
        click.echo("1. Start bridge service: python run.py")
        click.echo("2. Register device in web UI")
        click.echo(f"3. Use IP: {ip}")
        click.echo(f"4. Use Port: {port}")
        click.echo("5. Select Protocol: ZKTeco\n")

    @app.cli.command("init-db")
    def init_db():
        """Create the bridge tables (development / SQLite)."""
        db.create_all()
        click.echo(Fore.GREEN + "✅ Tables created.")

    @app.cli.command("auto-sync-once")
    def auto_sync_once():
        """Run one auto-sync pass over every eligible device and print the results."""
        results = current_app.extensions["biometric_bridge"].scheduler.run_once()
        for r in results:
            colour = Fore.GREEN if r.get("success") else Fore.RED
            click.echo(colour + f"{r['deviceId']}: {r.get('recordsSynced', 0)} new - {r.get('message')}")
        if not results:
            click.echo("No auto-sync enabled online devices.")
