import argparse
import sys
from mtt.common.logger import log, share_handlers
from mtt.core.config import load_settings
from mtt.core.errors import MttError, NetworkError
from mtt.core.gateway import HISTORY_DOC, PersistenceGateway
from mtt.core.tracker import TimeTracker
from mtt.util import format_duration


def build_parser():
    parser = argparse.ArgumentParser(prog="mtt", description="Track time against Project / Task activities.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="Run the local HTTP server.")
    sub.add_parser("list", help="Show active timers.")
    sub.add_parser("history", help="Show committed entries.")

    start = sub.add_parser("start", help="Start a timer for 'Project / Task'.")
    start.add_argument("topic")

    for name, text in (("toggle", "Pause or resume a timer."), ("stop", "Stop a timer and commit it to history.")):
        p = sub.add_parser(name, help=text)
        p.add_argument("id", help="Timer id or a unique prefix of it.")

    delete = sub.add_parser("delete", help="Discard a timer without committing it.")
    delete.add_argument("id")
    delete.add_argument("--yes", action="store_true", help="Don't ask for confirmation.")

    notes = sub.add_parser("notes", help="Replace a timer's notes.")
    notes.add_argument("id")
    notes.add_argument("text")
    return parser


def _print_active(tracker, out):
    timers = tracker.active_timers
    if not timers:
        print("No active timers.", file=out)
        return
    now = tracker.clock()
    for timer_id, timer in sorted(timers.items(), key=lambda kv: (kv[1].project.lower(), kv[1].task.lower())):
        state = "paused " if timer.is_paused else "running"
        elapsed = format_duration(timer.elapsed_ms(now) // 1000)
        print(f"{timer_id[:8]}  {state}  {elapsed}  {timer.project} / {timer.task}", file=out)


def _print_history(tracker, out):
    entries = tracker.history
    if not entries:
        print("No entries yet.", file=out)
        return
    for entry in entries:
        print(f"{entry.end_time:%Y-%m-%d %H:%M}  {format_duration(entry.duration_seconds)}  "
              f"{entry.project} / {entry.task}", file=out)


def _serve(gateway, settings):
    import uvicorn
    from mtt.web.api import create_app

    log.info(f"MTT server starting on http://{settings.host}:{settings.port}")
    # log_config=None stops uvicorn from replacing the shared handlers with its own
    share_handlers(log)
    uvicorn.run(create_app(gateway), host=settings.host, port=settings.port, log_config=None)


def main(argv=None, out=None, confirm=input, gateway=None):
    out = out or sys.stdout
    args = build_parser().parse_args(argv)
    if gateway is None:
        gateway = PersistenceGateway(settings=load_settings())
    settings = gateway.settings
    gateway.initialize()

    if args.command == "serve":
        _serve(gateway, settings)
        return 0

    tracker = TimeTracker(gateway, settings)
    try:
        tracker.load()
    except NetworkError as e:
        print(f"FATAL: could not load {HISTORY_DOC}: {e.message}", file=sys.stderr)
        return 1

    try:
        if args.command == "list":
            _print_active(tracker, out)
        elif args.command == "history":
            _print_history(tracker, out)
        elif args.command == "start":
            timer_id = tracker.start_topic(args.topic)
            timer = tracker.get(timer_id)
            print(f"Started {timer.project} / {timer.task} ({timer_id[:8]})", file=out)
        elif args.command == "toggle":
            timer = tracker.toggle(tracker.resolve_id(args.id))
            print(f"{'Paused' if timer.is_paused else 'Resumed'} {timer.project} / {timer.task}", file=out)
        elif args.command == "stop":
            result = tracker.stop(tracker.resolve_id(args.id))
            if result.discarded:
                print("Task of zero duration was discarded.", file=out)
            else:
                entry = result.entry
                print(f"Saved {entry.project} / {entry.task} ({format_duration(entry.duration_seconds)})", file=out)
        elif args.command == "delete":
            timer_id = tracker.resolve_id(args.id)
            timer = tracker.get(timer_id)
            if not args.yes:
                answer = confirm(f"Delete '{timer.project} / {timer.task}' without saving it? [y/N] ")
                if answer.strip().lower() not in ("y", "yes"):
                    print("Nothing deleted.", file=out)
                    return 0
            tracker.delete(timer_id)
            print(f"Deleted {timer.project} / {timer.task}", file=out)
        elif args.command == "notes":
            timer = tracker.set_notes(tracker.resolve_id(args.id), args.text)
            print(f"Updated notes for {timer.project} / {timer.task}", file=out)
    except MttError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    return 0


# Entry point for `python -m mtt`
def run() -> None:
    try:
        sys.exit(main())
    except SystemExit:
        raise
    except Exception:
        # Full stack trace, always
        log.exception("Uncaught exception in entrypoint, exiting")
        sys.exit(1)

if __name__ == "__main__":
    run()
