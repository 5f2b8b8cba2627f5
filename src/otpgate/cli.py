"""CLI entry point for otpgate."""

from __future__ import annotations

import logging
import sys

import click
from rich.console import Console

from otpgate.config import settings

console = Console()


def _secret_bytes(secret: str) -> bytes:
    from otpgate.base32 import decode_secret
    from otpgate.errors import InvalidSecretEncoding

    try:
        return decode_secret(secret)
    except InvalidSecretEncoding as e:
        raise click.BadParameter(str(e), param_hint="SECRET") from e


@click.group()
@click.option("--log-level", default=None, help="Override OTPGATE_LOG_LEVEL.")
def main(log_level: str | None) -> None:
    """otpgate — TOTP second factor tooling."""
    logging.basicConfig(
        level=(log_level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
def status() -> None:
    """Show effective settings."""
    console.print("[bold]otpgate settings[/bold]")
    console.print(f"  Issuer: {settings.issuer}")
    console.print(f"  Algorithm: {settings.algorithm}  Digits: {settings.digits}  Period: {settings.period}s")
    console.print(f"  Login window: ±{settings.window_radius}  Setup window: -{settings.setup_window_behind}")
    console.print(f"  Recovery codes: {settings.recovery_code_count} x {settings.recovery_code_length} chars")
    console.print(f"  Database: {settings.database_url.split('@')[-1]}")
    console.print(f"  Secrets encrypted at rest: {'yes' if settings.master_key else 'no'}")


@main.command()
@click.option("--bytes", "byte_length", default=None, type=int, help="Secret length in bytes (min 20).")
def secret(byte_length: int | None) -> None:
    """Print a new base32 secret."""
    from otpgate.generator import generate_secret

    try:
        click.echo(generate_secret(byte_length or settings.secret_bytes))
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--bytes") from e


@main.command()
@click.argument("secret")
@click.option("--at", "at", default=None, type=float, help="Unix time instead of now.")
def code(secret: str, at: float | None) -> None:
    """Print the current code for SECRET."""
    from otpgate.clock import SystemClock
    from otpgate.totp import compute_code, seconds_remaining

    raw = _secret_bytes(secret)
    when = SystemClock().now() if at is None else at
    try:
        value = compute_code(raw, when, period=settings.period, digits=settings.digits, algorithm=settings.algorithm)
        left = seconds_remaining(when, settings.period)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--at") from e
    click.echo(value)
    console.print(f"[dim]valid for {left}s[/dim]", highlight=False)


@main.command()
@click.argument("secret")
@click.argument("account")
@click.option("--issuer", default=None, help="Issuer shown in the authenticator app.")
def uri(secret: str, account: str, issuer: str | None) -> None:
    """Print the otpauth:// provisioning URI for SECRET."""
    from otpgate.totp import provisioning_uri

    _secret_bytes(secret)
    click.echo(
        provisioning_uri(
            secret,
            account,
            issuer or settings.issuer,
            algorithm=settings.algorithm,
            digits=settings.digits,
            period=settings.period,
        )
    )


@main.command()
@click.argument("secret")
@click.argument("otp")
@click.option("--window", default=None, type=int, help="Accepted drift in periods either way.")
def check(secret: str, otp: str, window: int | None) -> None:
    """Exit 0 if OTP is valid for SECRET now, 1 otherwise."""
    from otpgate.clock import SystemClock
    from otpgate.totp import match_window

    raw = _secret_bytes(secret)
    radius = settings.window_radius if window is None else window
    drift = match_window(
        raw,
        otp,
        SystemClock().now(),
        behind=radius,
        ahead=radius,
        period=settings.period,
        digits=settings.digits,
        algorithm=settings.algorithm,
    )
    if drift is None:
        console.print("[red]Invalid code[/red]")
        sys.exit(1)
    console.print(f"[green]Valid[/green] (drift {drift:+d})")


@main.command("recovery-codes")
@click.option("--count", default=None, type=int, help="How many codes.")
def recovery_codes(count: int | None) -> None:
    """Print a fresh recovery-code set."""
    from otpgate.generator import generate_recovery_codes

    for item in generate_recovery_codes(count or settings.recovery_code_count, settings.recovery_code_length):
        click.echo(item)


@main.command("init-db")
def init_db() -> None:
    """Create the otp_accounts table."""
    from otpgate.pg import PostgresAccountRepository

    PostgresAccountRepository().ensure_schema()
    console.print("[green]Schema ready[/green]")


if __name__ == "__main__":
    main()
