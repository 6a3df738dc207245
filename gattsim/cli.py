"""Typer CLI entrypoint."""

from __future__ import annotations

import logging

import typer

from gattsim.core.errors import GattsimError
from gattsim.core.model import Capability
from gattsim.core.service import SimulatorService
from gattsim.core.uuids import short_name

app = typer.Typer(help="Simulated BLE GATT peripheral with standard and proprietary services")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_service() -> SimulatorService:
    service = SimulatorService()
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


def _capability_names(capabilities: Capability) -> str:
    return "|".join(flag.name.lower() for flag in Capability if flag in capabilities)


@app.command("profiles")
def list_profiles() -> None:
    """List available simulation profiles."""
    try:
        service = _build_service()
        profiles = service.list_profiles()
        if not profiles:
            typer.echo("No profiles loaded")
            raise typer.Exit(code=1)

        for profile in profiles:
            info = profile.device_info
            typer.echo(f"{profile.id}: {profile.name} ({info.manufacturer} {info.model}, fw {info.firmware})")
            enabled = [name for name, spec in profile.simulation.generators.items() if spec.enabled]
            typer.echo(f"  generators: {', '.join(enabled) or '<none>'}")
    except GattsimError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("catalog")
def show_catalog(
    profile: str | None = typer.Option(None, "--profile", help="Profile ID"),
) -> None:
    """List the services and characteristics the peripheral exposes."""
    try:
        service = _build_service()
        for gatt_service in service.catalog(profile).services():
            typer.echo(f"{short_name(gatt_service.uuid)} {gatt_service.name}")
            for characteristic in gatt_service.characteristics:
                typer.echo(
                    f"  {short_name(characteristic.uuid)} [{_capability_names(characteristic.capabilities)}]"
                    f" {characteristic.value.hex() or '-'}"
                )
    except GattsimError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("run")
def run_peripheral(
    profile: str | None = typer.Option(None, "--profile", help="Profile ID"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Log traffic instead of using the Bluetooth adapter"),
    duration: float | None = typer.Option(None, "--duration", min=0.0, help="Stop after this many seconds"),
    name: str | None = typer.Option(None, "--name", help="Advertised device name"),
) -> None:
    """Register every service and run the simulation until interrupted."""
    try:
        service = _build_service()
        typer.echo(f"Starting {service.get_profile(profile).id}{' (dry run)' if dry_run else ''}; Ctrl+C to stop")
        service.run(
            profile,
            dry_run=dry_run,
            name=name,
            duration_s=duration,
            status_listener=lambda message: typer.echo(message),
        )
    except KeyboardInterrupt:
        typer.echo("Interrupted")
    except GattsimError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("exchange")
def exchange(
    address: str,
    payload_hex: str,
    write_char: str = typer.Option(..., "--write-char", help="Characteristic UUID to write (16- or 128-bit)"),
    notify_char: str | None = typer.Option(None, "--notify-char", help="Characteristic UUID to wait on"),
    timeout: float = typer.Option(5.0, "--timeout", min=0.1, help="Seconds to wait for the reply"),
) -> None:
    """Write PAYLOAD_HEX to a running simulator and print the reply."""
    try:
        payload = bytes.fromhex(payload_hex)
    except ValueError:
        typer.echo(f"Error: '{payload_hex}' is not a hex string", err=True)
        raise typer.Exit(code=1) from None

    try:
        service = _build_service()
        response = service.exchange(
            address,
            payload,
            write_char=write_char,
            notify_char=notify_char,
            timeout_s=timeout,
        )
    except (ValueError, GattsimError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    typer.echo(f"Sent {payload.hex()} to {address}")
    if response is not None:
        typer.echo(f"response={response.hex()}")
    else:
        typer.echo("No response")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
