from datetime import date as date_cls

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError

from souq.exceptions import BusinessError
from souq.models import DailyReport
from souq.services import daily_report


class Command(BaseCommand):
    help = "Open, close or reopen the business day, or show which day is open"

    def add_arguments(self, parser):
        parser.add_argument("action", choices=["status", "open", "close", "reopen"])
        parser.add_argument("--date", help="YYYY-MM-DD (defaults to today for open)")
        parser.add_argument("--user", help="Username to stamp on the report")

    def handle(self, *args, **options):
        day = self._parse_date(options.get("date"))
        user = self._get_user(options.get("user"))
        action = options["action"]

        try:
            if action == "status":
                report = daily_report.current_report()
                if report is None:
                    self.stdout.write("No business day is open.")
                else:
                    self.stdout.write(f"Open day: {report.date}")
                return

            if action == "open":
                report = daily_report.open_day(day, user=user)
            elif action == "close":
                report = daily_report.close_day(self._get_report(day), user=user)
            else:
                if day is None:
                    raise CommandError("--date is required to reopen a day.")
                report = daily_report.reopen_day(self._get_report(day), user=user)
        except BusinessError as exc:
            raise CommandError(f"[{exc.code}] {exc}")

        self.stdout.write(self.style.SUCCESS(f"{report.date}: {report.status}"))

    def _parse_date(self, value):
        if not value:
            return None
        try:
            return date_cls.fromisoformat(value)
        except ValueError:
            raise CommandError(f"Invalid date: {value}")

    def _get_user(self, username):
        if not username:
            return None
        try:
            return get_user_model().objects.get(username=username)
        except get_user_model().DoesNotExist:
            raise CommandError(f"Unknown user: {username}")

    def _get_report(self, day):
        if day is None:
            return None
        try:
            return DailyReport.objects.get(date=day)
        except DailyReport.DoesNotExist:
            raise CommandError(f"No daily report for {day}")
