from django.core.management.base import BaseCommand

from erp.debts import CUSTOMER, SIDES, SUPPLIER, recalculate_partner_debt


class Command(BaseCommand):
    help = "Rebuilds customer and supplier debt_amount from their open orders"

    def add_arguments(self, parser):
        parser.add_argument(
            "--partner-type",
            choices=[CUSTOMER, SUPPLIER],
            help="Only recalculate customers or only suppliers.",
        )

    def handle(self, *args, **options):
        partner_types = [options["partner_type"]] if options.get("partner_type") else [CUSTOMER, SUPPLIER]
        count = 0
        changed = 0

        for partner_type in partner_types:
            model = SIDES[partner_type].partner_model
            self.stdout.write(f"Recalculating {model._meta.verbose_name_plural}...")
            for partner in model.objects.order_by("pk").iterator():
                before = partner.debt_amount
                after = recalculate_partner_debt(partner_type, partner)
                count += 1
                if before != after:
                    changed += 1
                    self.stdout.write(f"  {partner.code}: {before} -> {after}")

        self.stdout.write(self.style.SUCCESS(f"Recalculated debt for {count} partners ({changed} changed)."))
