"""
Compare the cached current-stock balances with a replay of the stock ledger.
"""

import logging

from django.core.management.base import BaseCommand, CommandError

from rawmaterial.services import CurrentStockService, ServiceError

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Check current stock against the stock entry ledger'

    def add_arguments(self, parser):
        parser.add_argument('--repair', action='store_true', help='Rebuild drifted balances from the ledger')
        parser.add_argument('--material', type=int, help='Only check this raw material id')
        parser.add_argument('--warehouse', type=int, help='Only check this warehouse id')

    def handle(self, *args, **options):
        try:
            result = CurrentStockService.reconcile(
                raw_material_id=options.get('material'),
                warehouse_id=options.get('warehouse'),
                repair=options['repair'],
            )
        except ServiceError as e:
            raise CommandError(e.message)

        self.stdout.write(f'Checked {result["checked"]} balances.')

        if result['consistent']:
            self.stdout.write(self.style.SUCCESS('Current stock matches the ledger.'))
            return

        for item in result['drift']:
            self.stdout.write(self.style.WARNING(
                f'material={item["rawMaterialId"]} warehouse={item["warehouseId"]} '
                f'ledger={item["ledgerQuantity"]} cached={item["currentQuantity"]}'
            ))

        if result['repaired']:
            self.stdout.write(self.style.SUCCESS(f'Repaired {len(result["drift"])} balances.'))
        else:
            self.stdout.write(self.style.WARNING('Run with --repair to rebuild them.'))
