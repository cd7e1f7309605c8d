"""CLI interface with subcommand routing."""

import argparse
import asyncio
import json
import logging
import os
import sys
from datetime import datetime

from narration_producer.artifacts import (
    PROJECT_FILE,
    init_output_dir,
    list_projects,
    load_artifact,
    slug_from_path,
    write_artifact,
    write_mixed_output,
)
from narration_producer.client import GenerationClient
from narration_producer.constants import (
    DEFAULT_SERVICE_URL,
    OUTPUT_DIR,
    SERVICE_URL_ENV,
    STATUS_COMPLETED,
    STATUS_ERROR,
    VERSION,
)
from narration_producer.draft import (
    DraftStore,
    clear_draft,
    load_draft,
    restore_state,
    state_from_dict,
)
from narration_producer.media_production import MediaSelection
from narration_producer.mixing import LocalMixer, RemoteMixer
from narration_producer.models import ProjectState
from narration_producer.pipeline import ProductionSession
from narration_producer.presets import AUDIO_MIX_PRESETS, TEMPLATE_PRESETS
from narration_producer.state import ExtractCharacters, ProductionStore, RestoreDraft, UpdatePhase
from narration_producer.tts import EdgeTTSService
from narration_producer.voices import VoiceRoster


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _get_project_dir(slug: str, output_base: str) -> str:
    """Get project directory path, verify it exists."""
    project_dir = os.path.join(output_base, slug)
    if not os.path.exists(os.path.join(project_dir, PROJECT_FILE)):
        print(f"Error: Project '{slug}' not found.", file=sys.stderr)
        print("Run 'narration-producer run <project.json>' first.", file=sys.stderr)
        raise SystemExit(1)
    return project_dir


def _read_project_file(path: str) -> dict:
    if not os.path.exists(path):
        print(f"Error: File not found: {path}", file=sys.stderr)
        raise SystemExit(1)
    try:
        with open(path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        print(f"Error: {path} is not valid JSON: {e}", file=sys.stderr)
        raise SystemExit(1)
    if not data.get("script_sections"):
        print(f"Error: {path} has no script_sections.", file=sys.stderr)
        raise SystemExit(1)
    return data


def _selections(data: dict) -> tuple[MediaSelection | None, dict[str, MediaSelection]]:
    bgm = data.get("bgm_selection")
    sfx = data.get("sfx_selections") or {}
    return (
        MediaSelection.from_dict(bgm) if bgm else None,
        {key: MediaSelection.from_dict(sel) for key, sel in sfx.items()},
    )


def _build_backend(args, data: dict):
    """Return (service, mixer) for the chosen backend."""
    if args.local:
        service = EdgeTTSService(voice_map=data.get("edge_voices"))
        return service, LocalMixer()
    client = GenerationClient(args.service_url)
    mixer = RemoteMixer(client) if args.remote_mix else LocalMixer(client)
    return client, mixer


def _print_progress(state: ProjectState, event) -> None:
    if isinstance(event, UpdatePhase):
        detail = f": {event.detail}" if event.detail else ""
        print(f"  [{event.phase}] {event.status} {event.progress}%{detail}")


def _run_session(args, store: ProductionStore, data: dict, project_dir: str, resume: bool) -> None:
    service, mixer = _build_backend(args, data)
    config = AUDIO_MIX_PRESETS[args.preset] if args.preset else None
    bgm_selection, sfx_selections = _selections(data)

    session = ProductionSession(
        store,
        service,
        mixer,
        roster=VoiceRoster.from_dict(data.get("voices") or {}),
        draft_store=DraftStore(project_dir),
        config=config,
        use_stream=args.stream,
    )
    store.subscribe(_print_progress)
    state = asyncio.run(session.run(bgm_selection, sfx_selections, resume=resume))

    voice = state.production.voice_generation
    if voice.status == STATUS_ERROR:
        print(f"Error: Voice generation failed: {voice.detail}", file=sys.stderr)
        raise SystemExit(1)
    if voice.detail:
        print(f"Warning: {voice.detail}", file=sys.stderr)

    mixing = state.production.mixing_editing
    if mixing.output is None:
        print(f"Error: Mixing failed: {mixing.error or 'no output'}", file=sys.stderr)
        raise SystemExit(1)

    path = write_mixed_output(project_dir, mixing.output)
    print(f"Done! {path} ({mixing.output.duration_ms / 1000:.1f}s)")


def cmd_run(args):
    """Run the full pipeline for a project file."""
    _configure_logging(args.verbose)
    data = _read_project_file(args.project)

    slug = slug_from_path(args.project)
    project_dir = init_output_dir(slug, output_base=args.output)
    write_artifact(project_dir, PROJECT_FILE, data)
    clear_draft(DraftStore(project_dir))

    store = ProductionStore(state_from_dict(data))
    if not store.state.characters:
        store.dispatch(ExtractCharacters())

    print(f"Project: {slug} ({len(store.state.script_sections)} sections)")
    _run_session(args, store, data, project_dir, resume=False)


def cmd_resume(args):
    """Resume a project from its saved draft."""
    _configure_logging(args.verbose)
    project_dir = _get_project_dir(args.slug, args.output)
    data = load_artifact(project_dir, PROJECT_FILE) or {}

    snapshot = load_draft(DraftStore(project_dir))
    if snapshot is None:
        print(f"Error: No saved draft for '{args.slug}'.", file=sys.stderr)
        raise SystemExit(1)

    store = ProductionStore()
    store.dispatch(RestoreDraft(restore_state(snapshot)))
    print(f"Resuming {args.slug} from step {snapshot.step}")
    _run_session(args, store, data, project_dir, resume=True)


def cmd_status(args):
    """Show the saved draft's production status."""
    project_dir = _get_project_dir(args.slug, args.output)
    snapshot = load_draft(DraftStore(project_dir))
    print(f"Project: {args.slug}")
    if snapshot is None:
        print("No saved draft.")
        return

    saved = datetime.fromtimestamp(snapshot.saved_at / 1000).strftime("%Y-%m-%d %H:%M:%S")
    print(f"Step:    {snapshot.step} (saved {saved})")

    state = restore_state(snapshot)
    production = state.production
    print("Phases:")
    for name, phase in (
        ("voice", production.voice_generation),
        ("media", production.media_production),
        ("mixing", production.mixing_editing),
    ):
        detail = f" ({phase.detail})" if phase.detail else ""
        print(f"  {name:<8} {phase.status:<11} {phase.progress:>3}%{detail}")
    if production.mixing_editing.error:
        print(f"  mixing error: {production.mixing_editing.error}")

    print("Sections:")
    statuses = production.voice_generation.section_status
    for section in state.script_sections:
        status = statuses.get(section.id)
        if status is None:
            print(f"  [----] {section.name}")
            continue
        marker = "[done]" if status.status == STATUS_COMPLETED else "[err!]" if status.status == STATUS_ERROR else "[part]"
        with_audio = sum(1 for s in status.audio_segments if s.has_audio)
        error = f" {status.error}" if status.error else ""
        print(f"  {marker} {section.name} ({with_audio}/{len(status.audio_segments)} clips){error}")


def cmd_list(args):
    """List all projects."""
    projects = list_projects(output_base=args.output)
    if not projects:
        print("No projects found.")
        return
    print("Projects:")
    for name in projects:
        print(f"  {name}")


def cmd_presets(args):
    """List audio mix presets and the templates that use them."""
    print("Mix presets:")
    for name, config in AUDIO_MIX_PRESETS.items():
        templates = sorted(t for t, p in TEMPLATE_PRESETS.items() if p == name)
        print(f"  {name}")
        print(
            f"    silence {config.silence_start_ms}/{config.silence_end_ms} ms, "
            f"gaps {config.same_speaker_gap_ms}/{config.different_speaker_gap_ms}/{config.section_gap_ms} ms, "
            f"bgm {config.bgm_volume:.2f}, sfx {config.sfx_volume:.2f}, "
            f"compress {'on' if config.compress_audio else 'off'}"
        )
        if templates:
            print(f"    templates: {', '.join(templates)}")


def _add_backend_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--service-url",
        default=os.environ.get(SERVICE_URL_ENV, DEFAULT_SERVICE_URL),
        help=f"Generation service base URL (default: ${SERVICE_URL_ENV} or {DEFAULT_SERVICE_URL})",
    )
    parser.add_argument("--local", action="store_true", help="Use local edge-tts instead of the service")
    parser.add_argument("--remote-mix", action="store_true", help="Mix on the service instead of locally")
    parser.add_argument("--stream", action="store_true", help="Use the streaming batch endpoint")
    parser.add_argument("--preset", choices=sorted(AUDIO_MIX_PRESETS), help="Override the template's mix preset")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")


def main(argv: list[str] | None = None):
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="narration-producer",
        description="Narration Producer: voice, music, and mixing for scripted audio",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("--output", default=OUTPUT_DIR, help=f"Output directory (default: {OUTPUT_DIR})")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # run
    run_parser = subparsers.add_parser("run", help="Run the production pipeline for a project file")
    run_parser.add_argument("project", help="Path to the project JSON file")
    _add_backend_args(run_parser)
    run_parser.set_defaults(func=cmd_run)

    # resume
    resume_parser = subparsers.add_parser("resume", help="Resume a project from its saved draft")
    resume_parser.add_argument("slug", help="Project slug")
    _add_backend_args(resume_parser)
    resume_parser.set_defaults(func=cmd_resume)

    # status
    status_parser = subparsers.add_parser("status", help="Show saved production status")
    status_parser.add_argument("slug", help="Project slug")
    status_parser.set_defaults(func=cmd_status)

    # list
    list_parser = subparsers.add_parser("list", help="List all projects")
    list_parser.set_defaults(func=cmd_list)

    # presets
    presets_parser = subparsers.add_parser("presets", help="List audio mix presets")
    presets_parser.set_defaults(func=cmd_presets)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
