"""CLI interface with subcommand routing for story cut scripts."""

import argparse
import asyncio
import logging
import os
import sys
from functools import partial

from story_cut_player.artifacts import JsonPreferenceStore, timeline_to_dict, write_artifact
from story_cut_player.assembly import build_timeline, estimate_timeline_duration, media_resolver
from story_cut_player.constants import PREFERENCES, PREFERENCE_ALIASES, PREFERENCES_FILE, VERSION
from story_cut_player.errors import StoryCutError
from story_cut_player.parser import parse_script
from story_cut_player.player import PydubPlayer
from story_cut_player.presenter import ConsolePresenter
from story_cut_player.scheduler import PlaybackScheduler, PlaybackState
from story_cut_player.tts import synthesize
from story_cut_player.voices import VOICE_POOL, context_from_cast, load_cast, resolve_segment, segment_key


def _read_script(path: str) -> str:
    """Read a script file, exiting with an error if it is missing or empty."""
    if not os.path.exists(path):
        print(f"Error: File not found: {path}", file=sys.stderr)
        raise SystemExit(1)
    with open(path) as f:
        text = f.read()
    if not text.strip():
        print(f"Error: File is empty: {path}", file=sys.stderr)
        raise SystemExit(1)
    return text


def _parse_or_exit(path: str):
    segments = parse_script(_read_script(path))
    if not segments:
        print(f"Error: Could not parse any segments from: {path}", file=sys.stderr)
        raise SystemExit(1)
    return segments


def _preference_store(script_path: str) -> JsonPreferenceStore:
    """Preferences live beside the script, shared by every cut in that directory."""
    directory = os.path.dirname(os.path.abspath(script_path))
    return JsonPreferenceStore(os.path.join(directory, PREFERENCES_FILE))


def _context(script_path: str):
    cast = load_cast(script_path)
    return cast, context_from_cast(cast, synthesize, preference_store=_preference_store(script_path))


def cmd_parse(args):
    """Parse a script and list its segments."""
    warnings = []
    segments = parse_script(_read_script(args.script), warnings)
    for w in warnings:
        print(f"  skipped {w}")
    if not segments:
        print(f"Error: Could not parse any segments from: {args.script}", file=sys.stderr)
        raise SystemExit(1)

    print(f"Segments ({len(segments)}):")
    for i, seg in enumerate(segments, 1):
        if seg.kind == "voice":
            extra = f" [{seg.preference}]" if seg.preference else ""
            print(f"  {i:3d}. {seg.speaker_tag}{extra}: {seg.audio_content}")
            if seg.speaker_role == "contributor":
                print(f"       key: {segment_key(seg)}")
        else:
            duration = f" {seg.explicit_duration}s" if seg.explicit_duration is not None else ""
            print(f"  {i:3d}. [{seg.kind.upper()}]{duration} {seg.display_content}")


def cmd_timeline(args):
    """Resolve every segment and show the resulting timeline."""
    segments = _parse_or_exit(args.script)
    cast, context = _context(args.script)
    resolve_media = media_resolver(cast.get("media", {}))

    try:
        steps = asyncio.run(build_timeline(segments, partial(resolve_segment, context=context), resolve_media))
    except StoryCutError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)

    try:
        print(f"Timeline ({len(steps)} steps, ~{estimate_timeline_duration(steps):.1f}s):")
        for i, step in enumerate(steps, 1):
            if step.type == "voice":
                r = step.resolution
                print(f"  {i:3d}. voice  {step.segment.speaker_tag} <- {r.source_type}: {r.text_used}")
            else:
                target = step.media_url or ""
                print(f"  {i:3d}. {step.type:<6} {step.duration_seconds:.1f}s {target}")
        if args.output:
            path = write_artifact(args.output, "timeline.json", timeline_to_dict(steps))
            print(f"Wrote {path}")
    finally:
        for step in steps:
            if step.resolution is not None:
                step.resolution.release()


def cmd_play(args):
    """Play a script headlessly, printing visual and text state."""
    segments = _parse_or_exit(args.script)
    cast, context = _context(args.script)
    scheduler = PlaybackScheduler(ConsolePresenter(), PydubPlayer())

    try:
        state = asyncio.run(scheduler.play(
            segments,
            partial(resolve_segment, context=context),
            media_resolver(cast.get("media", {})),
        ))
    except KeyboardInterrupt:
        scheduler.stop()
        print("Stopped.")
        return
    except StoryCutError:
        raise SystemExit(1)
    if state != PlaybackState.COMPLETED:
        raise SystemExit(1)


def cmd_set_preference(args):
    """Store the audio preference for one contributor line."""
    preference = PREFERENCE_ALIASES.get(args.preference, args.preference)
    cast = load_cast(args.script)
    store = _preference_store(args.script)
    store.set_stored_preference(cast.get("cut_id", ""), args.key, preference)
    print(f"Updated: {args.key} -> {preference}")


def cmd_voices(args):
    """List available voices."""
    filter_str = args.filter.lower() if args.filter else None
    voices = VOICE_POOL
    if filter_str:
        voices = [v for v in voices if filter_str in v.lower()]
    if not voices:
        print("No matching voices found.")
        return
    print("Available voices:")
    for v in voices:
        print(f"  {v}")


def main(argv=None):
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="story-cut",
        description="Story Cut Player: play tagged story scripts with voices and visual cues",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show progress logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # parse
    parse_parser = subparsers.add_parser("parse", help="Parse a script and list its segments")
    parse_parser.add_argument("script", help="Path to the script file")
    parse_parser.set_defaults(func=cmd_parse)

    # timeline
    timeline_parser = subparsers.add_parser("timeline", help="Resolve audio and show the timeline")
    timeline_parser.add_argument("script", help="Path to the script file")
    timeline_parser.add_argument("-o", "--output", help="Directory to write timeline.json to")
    timeline_parser.set_defaults(func=cmd_timeline)

    # play
    play_parser = subparsers.add_parser("play", help="Play a script")
    play_parser.add_argument("script", help="Path to the script file")
    play_parser.set_defaults(func=cmd_play)

    # set-preference
    pref_parser = subparsers.add_parser("set-preference", help="Store the audio preference for a line")
    pref_parser.add_argument("script", help="Path to the script file")
    pref_parser.add_argument("key", help="Segment key, as shown by 'parse'")
    pref_parser.add_argument("preference", choices=PREFERENCES + tuple(PREFERENCE_ALIASES),
                             help="Audio source to prefer")
    pref_parser.set_defaults(func=cmd_set_preference)

    # voices
    voices_parser = subparsers.add_parser("voices", help="List available voices")
    voices_parser.add_argument("--filter", help="Filter voices by substring")
    voices_parser.set_defaults(func=cmd_voices)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return

    args.func(args)
