"""``voice`` command group for the Litestar CLI."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import click

if TYPE_CHECKING:
    from voicequota.client.api import VoiceQuotaClient

__all__ = ("voice_group",)

_base_url_option = click.option(
    "--base-url",
    envvar="VOICEQUOTA_BASE_URL",
    default="http://127.0.0.1:8000",
    show_default=True,
    help="Where the voice quota service listens.",
)
_token_option = click.option(
    "--token",
    envvar="VOICEQUOTA_TOKEN",
    required=True,
    help="Bearer token identifying the user.",
)


@click.group(name="voice", invoke_without_command=False, help="Voice input usage and recording.")
def voice_group() -> None:
    """Voice input commands."""


@voice_group.command(name="token", help="Issue a bearer token for a user id.")
@click.argument("user_id")
def issue_token(user_id: str) -> None:
    from voicequota.domain.accounts.guards import auth

    click.echo(auth.create_token(identifier=user_id))


@voice_group.command(name="usage", help="Show the current voice usage.")
@_base_url_option
@_token_option
@click.option("--verbose", "-v", is_flag=True, default=False, help="Show usage details.")
def show_usage(base_url: str, token: str, verbose: bool) -> None:
    from voicequota.client.api import VoiceQuotaClient
    from voicequota.client.indicator import UsageIndicator

    async def _show() -> UsageIndicator:
        async with VoiceQuotaClient.connect(base_url, token) as api:
            indicator = UsageIndicator(api)
            await indicator.refresh()
            return indicator

    indicator = asyncio.run(_show())
    if indicator.snapshot is None:
        raise click.ClickException(indicator.last_error or "Voice usage unavailable")
    click.echo(indicator.render())
    if verbose:
        for line in indicator.describe():
            click.echo(f"  {line}")


@voice_group.command(name="record", help="Record one clip from the microphone and transcribe it.")
@_base_url_option
@_token_option
@click.option("--language", "-l", default="en", show_default=True, help="Language spoken in the clip.")
@click.option("--device", default=None, help="Input device name or index.")
def record(base_url: str, token: str, language: str, device: str | None) -> None:
    from voicequota.client.api import VoiceQuotaClient
    from voicequota.client.capture import AudioCapture, CaptureStatus, SoundDeviceSource
    from voicequota.client.indicator import UsageIndicator
    from voicequota.domain.voice.languages import is_supported

    if not is_supported(language):
        msg = f"Unsupported language: {language}"
        raise click.BadParameter(msg, param_hint="--language")

    async def _record(api: VoiceQuotaClient) -> None:
        indicator = UsageIndicator(api)
        await indicator.refresh()
        if indicator.disabled:
            raise click.ClickException(indicator.render())

        source = SoundDeviceSource(device=int(device) if device and device.isdigit() else device)
        capture = AudioCapture(source, api.transcribe, language=language)
        click.echo("Recording... stops after 3 seconds of silence (Ctrl+C to abort)")
        result = await capture.record()

        if result.notice:
            click.echo(result.notice)
        if result.status is not CaptureStatus.TRANSCRIBED:
            raise click.ClickException(result.error or result.status.value)

        response = result.response
        click.echo(result.text)
        if response is not None:
            indicator.update(response.usage)
            if response.warning:
                click.secho(response.warning, fg="yellow")
        click.echo(indicator.render())

    async def _main() -> None:
        async with VoiceQuotaClient.connect(base_url, token) as api:
            await _record(api)

    asyncio.run(_main())
