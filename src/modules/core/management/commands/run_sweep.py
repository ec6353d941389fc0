from __future__ import annotations

import json
import signal
import threading

from django.core.management.base import BaseCommand, CommandError

from modules.core.periodic import periodic_tasks


class Command(BaseCommand):
    help = "Run a registered sweep once, or keep running it on its interval."

    def add_arguments(self, parser):
        parser.add_argument("name", help="Sweep name, e.g. payment_reminders.")
        parser.add_argument(
            "--loop",
            action="store_true",
            help="Run under the in-process ticker until interrupted.",
        )

    def handle(self, *args, **options):
        name = options["name"]
        if name not in periodic_tasks:
            available = ", ".join(periodic_tasks.names())
            raise CommandError(f"Unknown sweep '{name}'. Available: {available}")
        task = periodic_tasks.get(name)

        if not options["loop"]:
            report = task.run()
            self.stdout.write(json.dumps(report.as_dict(), indent=2))
            return

        stop_event = threading.Event()

        def stop(signum, frame):
            self.stdout.write(f"Stopping {name}...")
            stop_event.set()

        signal.signal(signal.SIGINT, stop)
        signal.signal(signal.SIGTERM, stop)
        self.stdout.write(
            f"Running {name} every {task.interval.total_seconds():.0f}s (Ctrl+C to stop)"
        )
        task.run_forever(stop_event)
        self.stdout.write(self.style.SUCCESS(f"{name} stopped."))
