from django.core.management.base import BaseCommand, CommandError

from souq.services.balance_service import find_inconsistencies


class Command(BaseCommand):
    help = "Lists every stored balance that disagrees with the rows it is derived from"

    def handle(self, *args, **options):
        self.stdout.write("Checking invoices, collections, parties and batches...")
        problems = find_inconsistencies()

        for p in problems:
            self.stdout.write(
                f"{p['entity']} #{p['id']} {p['field']}: stored {p['stored']}, expected {p['expected']}"
            )

        if problems:
            raise CommandError(f"{len(problems)} inconsistencies found.")
        self.stdout.write(self.style.SUCCESS("Ledger is consistent."))
