from django.core.management.base import BaseCommand

from souq.services.balance_service import repair_derived_fields


class Command(BaseCommand):
    help = "Rebuilds invoice and collection figures from their allocations"

    def add_arguments(self, parser):
        parser.add_argument(
            "--parties",
            action="store_true",
            help="Also rewrite customer and supplier balances from history",
        )

    def handle(self, *args, **options):
        self.stdout.write("Recalculating derived balances...")
        counts = repair_derived_fields(include_parties=options["parties"])

        for entity, count in counts.items():
            if count:
                self.stdout.write(f"Repaired {count} {entity} row(s)")

        self.stdout.write(self.style.SUCCESS(f"Done, {sum(counts.values())} row(s) updated."))
