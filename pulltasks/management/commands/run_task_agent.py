import time

from django.conf import settings
from django.core.management.base import BaseCommand

from pulltasks import registry
from pulltasks.agent import TaskLeasingAgent


class Command(BaseCommand):
    help = "Lease due pull tasks and execute them, polling until interrupted"

    def add_arguments(self, parser):
        conf = getattr(settings, "PULLTASKS", {})
        parser.add_argument("--once", action="store_true", help="Run a single poll cycle and exit")
        parser.add_argument("--sleep", type=float, default=conf.get("POLL_SECONDS", 60))
        parser.add_argument("--max-workers", type=int, default=conf.get("MAX_WORKERS", 10))
        parser.add_argument("--lease-seconds", type=int, default=conf.get("LEASE_SECONDS", 600))
        parser.add_argument("--pool", default=conf.get("POOL", "default"))

    def handle(self, *args, **opts):
        conf = getattr(settings, "PULLTASKS", {})
        if not conf.get("ENABLED", True):
            self.stdout.write(self.style.WARNING("Pull tasks are disabled (PULLTASKS_ENABLED=0)."))
            return

        agent = TaskLeasingAgent(
            name=conf.get("AGENT_NAME", "acquiring-agent"),
            owner=conf.get("OWNER"),
            pool=opts["pool"],
            max_workers=opts["max_workers"],
            lease_seconds=opts["lease_seconds"],
        )
        self.stdout.write(self.style.SUCCESS(
            f"Agent {agent.name} polling pool {opts['pool']} with {agent.max_workers} worker(s); "
            f"handlers: {', '.join(registry.registered_names()) or '-'}"
        ))

        try:
            while True:
                count = agent.lease_and_execute_tasks()
                if count:
                    self.stdout.write(self.style.SUCCESS(f"Executed {count} task(s)"))
                if opts["once"]:
                    if not count:
                        self.stdout.write(self.style.SUCCESS("No due tasks."))
                    return
                if not count:
                    time.sleep(opts["sleep"])
        except KeyboardInterrupt:
            self.stdout.write(self.style.WARNING("Interrupted, stopping agent."))
