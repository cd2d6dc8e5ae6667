from decimal import Decimal

from django.core.management.base import BaseCommand
from hotel_booking.models import Room


class Command(BaseCommand):
    help = 'Populate database with sample rooms'

    def handle(self, *args, **options):
        rooms_data = [
            {
                'number': '101',
                'category': Room.Category.ECONOMY,
                'price': Decimal('1500.00'),
                'capacity': 2,
                'description': 'Compact room with a queen bed'
            },
            {
                'number': '102',
                'category': Room.Category.ECONOMY,
                'price': Decimal('1800.00'),
                'capacity': 2,
                'description': 'Economy room with garden view'
            },
            {
                'number': '201',
                'category': Room.Category.DELUXE,
                'price': Decimal('3200.00'),
                'capacity': 3,
                'description': 'Spacious deluxe room with balcony'
            },
            {
                'number': '202',
                'category': Room.Category.DELUXE,
                'price': Decimal('3500.00'),
                'capacity': 3,
                'description': 'Deluxe room with city view and mini bar'
            },
            {
                'number': '301',
                'category': Room.Category.SUITE,
                'price': Decimal('6000.00'),
                'capacity': 4,
                'description': 'Family suite with separate living area'
            },
            {
                'number': '401',
                'category': Room.Category.PRESIDENTIAL,
                'price': Decimal('15000.00'),
                'capacity': 6,
                'description': 'Top floor presidential suite'
            },
        ]

        for room_data in rooms_data:
            room, created = Room.objects.get_or_create(
                number=room_data['number'],
                defaults=room_data
            )

            if created:
                self.stdout.write(f'Created room: {room.number} - {room.category}')
            else:
                self.stdout.write(f'Room {room.number} already exists')

        self.stdout.write(
            self.style.SUCCESS('Successfully populated database with sample rooms')
        )
