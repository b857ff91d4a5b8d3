from django.core.management.base import BaseCommand

from toolbox_orchestrator.jobs import schedule_reconcile
from toolbox_orchestrator.lifecycle import IN_FLIGHT_STATES, POLLED_STATES
from toolbox_orchestrator.models import ToolboxRecord
from toolbox_orchestrator.reconciler import tick


class Command(BaseCommand):
    help = "Run one reconciliation tick for every toolbox that still needs polling."

    def add_arguments(self, parser):
        parser.add_argument("--toolbox-id", help="Reconcile only this ToolboxRecord UUID")
        parser.add_argument(
            "--schedule",
            action="store_true",
            help="Restart the background polling loops instead of ticking inline",
        )

    def handle(self, *args, **options):
        toolboxes = ToolboxRecord.objects.filter(status__in=POLLED_STATES | IN_FLIGHT_STATES)
        if options.get("toolbox_id"):
            toolboxes = ToolboxRecord.objects.filter(id=options["toolbox_id"])
        count = 0
        for toolbox_id in toolboxes.values_list("id", flat=True):
            count += 1
            if options["schedule"]:
                schedule_reconcile(toolbox_id)
                self.stdout.write(f"{toolbox_id}: polling scheduled")
                continue
            result = tick(toolbox_id)
            suffix = " (skipped, tick in progress)" if result.skipped else ""
            self.stdout.write(f"{toolbox_id}: {result.status}{suffix}")
        self.stdout.write(f"Reconciled {count} toolbox(es)")
