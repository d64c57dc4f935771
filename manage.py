import asyncio
import json
import os
from pathlib import Path
import secrets
import subprocess
from typing import Annotated

from rich import print
import typer

from farm_auth.core.config import settings
from farm_auth.core.services.cache import CacheStore
from farm_auth.core.services.tokens import PLACEHOLDER_PREFIXES

app = typer.Typer()

# Secrets generated by `ensure-secrets`, in the order they are written
SECRET_KEYS = (
    "JWT_ACCESS_SECRET",
    "JWT_REFRESH_SECRET",
    "JWT_VERIFICATION_SECRET",
    "OTP_HASH_SECRET",
)


def _needs_secret(value: str | None) -> bool:
    return not value or not value.strip() or value.startswith(PLACEHOLDER_PREFIXES)


def ensure_secrets_task(env_file: Path, force: bool = False) -> list[str]:
    """
    Write random signing secrets into an env file.

    A secret is generated when it is missing from both the file and the
    process environment, or when its value is a placeholder ("your_..." or
    "change-me..."). Other lines of the file are preserved as-is.

    Args:
        env_file: Path to the env file; created if it does not exist.
        force: Regenerate every secret, even valid ones.

    Returns:
        list[str]: The keys that were (re)generated.
    """
    lines = env_file.read_text(encoding="utf-8").splitlines() if env_file.exists() else []

    positions: dict[str, int] = {}
    values: dict[str, str] = {}
    for index, line in enumerate(lines):
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, _, value = stripped.partition("=")
        positions[key.strip()] = index
        values[key.strip()] = value.strip().strip("\"'")

    generated = []
    for key in SECRET_KEYS:
        current = values.get(key, os.environ.get(key))
        if not force and not _needs_secret(current):
            continue
        line = f"{key}={secrets.token_hex(48)}"
        if key in positions:
            lines[positions[key]] = line
        else:
            lines.append(line)
        generated.append(key)

    if generated:
        env_file.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return generated


async def flush_cache_task(prefix: str) -> int:
    """
    Delete cache keys starting with ``prefix`` from Redis and the local fallback.

    Returns:
        int: Number of keys deleted.
    """
    cache = CacheStore.from_settings(settings)
    try:
        mode = await cache.connect()
        print(f"[cyan]Cache store in {mode.value} mode[/cyan]")
        return await cache.flush(prefix)
    finally:
        await cache.aclose()


@app.command()
def ensure_secrets(
    env_file: Annotated[
        Path,
        typer.Option("--env-file", "-f", help="Env file to write the secrets to"),
    ] = Path(".env"),
    force: Annotated[
        bool,
        typer.Option("--force", help="Regenerate secrets even if they are set"),
    ] = False,
):
    """
    Generate JWT and OTP hashing secrets that are missing or still placeholders.

    Examples:
        python manage.py ensure-secrets
        python manage.py ensure-secrets --env-file .env.production --force
    """
    generated = ensure_secrets_task(env_file, force=force)
    if generated:
        for key in generated:
            print(f"[green]Generated[/green] {key}")
        print(f"[green]Secrets saved to {env_file}[/green]")
    else:
        print("[cyan]All secrets already set; nothing to do[/cyan]")


@app.command()
def flush_cache(
    prefix: Annotated[
        str,
        typer.Option("--prefix", "-p", help="Only delete keys starting with this prefix"),
    ] = "otp:",
    everything: Annotated[
        bool,
        typer.Option("--all", help="Delete every key, including revoked tokens"),
    ] = False,
):
    """
    Clear pending OTP sessions (and, with --all, the revocation list).

    Examples:
        python manage.py flush-cache
        python manage.py flush-cache --all
    """
    if everything:
        prefix = ""
        typer.confirm("This also forgets every revoked token. Continue?", abort=True)
    deleted = asyncio.run(flush_cache_task(prefix))
    print(f"[green]Deleted {deleted} cache keys[/green]")


@app.command()
def runserver():
    try:
        server_command = (
            "uvicorn farm_auth.main:app --host 127.0.0.1 --port 8000 --reload"
            if settings.DEBUG
            else "uvicorn farm_auth.main:app --host 0.0.0.0 --port 8000"
        )
        print(f"Running FastAPI server: {server_command}")
        subprocess.run(server_command, shell=True, check=True)
    except subprocess.CalledProcessError as e:
        print(f"[red]Error:[/red] {e}")
        raise


@app.command()
def generateopenapi(
    output: Annotated[
        Path, typer.Option("--output", "-o", help="Where to write the schema")
    ] = Path("openapi.json"),
):
    """
    Generates the OpenAPI schema for the FastAPI application and saves it to a JSON file.
    """
    from farm_auth.main import app as fastapi_app

    output.write_text(json.dumps(fastapi_app.openapi(), indent=2), encoding="utf-8")
    print(f"[green]OpenAPI schema written to {output}[/green]")


@app.callback()
def main(ctx: typer.Context):
    print(f"Executing the command: {ctx.invoked_subcommand}")


if __name__ == "__main__":
    app()
