from django.test import TestCase, TransactionTestCase, override_settings
from django.db import DatabaseError, connection
from rest_framework.test import APITestCase
from rest_framework import status
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import patch
from concurrent.futures import ThreadPoolExecutor, as_completed
import threading

from .models import Room, Customer, CustomerPhone, Booking, Payment
from .exceptions import (
    BookingNotFoundError,
    ConflictError,
    IdentityRequiredError,
    InvalidPaymentError,
    InvalidRangeError,
    PhoneRequiredError,
    RoomNotFoundError,
    RoomUnavailableError,
    StoreError,
)
from . import services
from .services import CustomerIdentity, CustomerProfile


def make_profile(name='Test Guest', mobile='9876543210', **extra):
    return CustomerProfile(name=name, mobile=mobile, **extra)


@override_settings(BOOKING_LOCK_RETRIES=10, BOOKING_LOCK_RETRY_DELAY=0.02)
class RaceConditionTestCase(TransactionTestCase):
    """Test race conditions in booking creation and customer resolution"""

    def setUp(self):
        self.room = Room.objects.create(
            number="101",
            category=Room.Category.ECONOMY,
            price=Decimal("1500.00"),
            capacity=2,
        )
        self.check_in = date(2024, 6, 1)
        self.check_out = date(2024, 6, 4)

    def _run_concurrently(self, func, args_list):
        barrier = threading.Barrier(len(args_list))

        def worker(args):
            try:
                barrier.wait()
                return {'success': True, 'result': func(*args)}
            except Exception as e:
                return {'success': False, 'error': e}
            finally:
                connection.close()

        results = []
        with ThreadPoolExecutor(max_workers=len(args_list)) as executor:
            futures = [executor.submit(worker, args) for args in args_list]
            for future in as_completed(futures):
                results.append(future.result())
        return results

    def test_concurrent_booking_attempts_same_room(self):
        """Only one of several concurrent bookings of one room may commit"""

        num_attempts = 5
        args_list = [
            (
                CustomerIdentity(email=f'guest{i}@example.com'),
                make_profile(name=f'Guest {i}'),
                self.room.number,
                self.check_in,
                self.check_out,
            )
            for i in range(num_attempts)
        ]
        results = self._run_concurrently(services.create_booking, args_list)

        successful = [r for r in results if r['success']]
        failed = [r for r in results if not r['success']]

        self.assertEqual(len(successful), 1,
                         f"Expected exactly 1 successful booking, got {len(successful)}: {results}")
        self.assertEqual(len(failed), num_attempts - 1)
        for result in failed:
            self.assertIsInstance(result['error'], RoomUnavailableError, result)

        self.room.refresh_from_db()
        self.assertEqual(self.room.status, Room.Status.OCCUPIED)
        self.assertEqual(Booking.objects.filter(room=self.room, checked_out_at__isnull=True).count(), 1)

        # no customer survives from a rolled back attempt
        winner = successful[0]['result']
        self.assertEqual(list(Customer.objects.values_list('pk', flat=True)), [winner.customer_id])

    def test_concurrent_resolution_of_new_customer(self):
        """Two requests for the same new identity end up with one customer row"""

        identity = CustomerIdentity(email='same@example.com', national_id='123412341234')
        args_list = [(identity, make_profile(name=f'Same Guest {i}')) for i in range(2)]
        results = self._run_concurrently(services.resolve_or_create_customer, args_list)

        successful = [r for r in results if r['success']]
        self.assertEqual(len(successful), len(args_list), results)
        customer_ids = {r['result'][0].pk for r in successful}
        self.assertEqual(len(customer_ids), 1)
        self.assertEqual(Customer.objects.filter(email='same@example.com').count(), 1)


class CustomerDirectoryTestCase(TestCase):
    """Test customer lookup-or-create by unique identity"""

    def setUp(self):
        self.identity = CustomerIdentity(email='asha@example.com', national_id='111122223333')
        self.profile = make_profile(
            name='Asha Rao',
            date_of_birth=date(1990, 5, 17),
            street='12 MG Road',
            city='Pune',
            state='MH',
            country='India',
        )

    def test_new_customer_is_created_with_phone(self):
        customer, created = services.resolve_or_create_customer(self.identity, self.profile)

        self.assertTrue(created)
        self.assertEqual(customer.name, 'Asha Rao')
        self.assertEqual(customer.city, 'Pune')
        self.assertEqual(
            list(customer.phones.values_list('mobile_number', flat=True)),
            ['9876543210'],
        )

    def test_same_email_resolves_to_same_customer(self):
        """Resolution is idempotent and never duplicates a row"""

        first, created_first = services.resolve_or_create_customer(self.identity, self.profile)
        second, created_second = services.resolve_or_create_customer(
            CustomerIdentity(email='asha@example.com'), make_profile(name='Someone Else')
        )

        self.assertTrue(created_first)
        self.assertFalse(created_second)
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(Customer.objects.count(), 1)
        self.assertEqual(CustomerPhone.objects.count(), 1)

    def test_national_id_alone_resolves_existing_customer(self):
        first, _ = services.resolve_or_create_customer(self.identity, self.profile)
        second, created = services.resolve_or_create_customer(
            CustomerIdentity(national_id='111122223333'), make_profile()
        )

        self.assertFalse(created)
        self.assertEqual(first.pk, second.pk)

    def test_existing_customer_is_not_updated(self):
        """Profile fields on a repeat request do not touch the stored record"""

        services.resolve_or_create_customer(self.identity, self.profile)
        customer, _ = services.resolve_or_create_customer(
            self.identity, make_profile(name='Renamed', mobile='1111111111', city='Goa')
        )

        customer.refresh_from_db()
        self.assertEqual(customer.name, 'Asha Rao')
        self.assertEqual(customer.city, 'Pune')
        self.assertEqual(customer.phones.count(), 1)

    def test_email_lookup_ignores_case_and_whitespace(self):
        first, _ = services.resolve_or_create_customer(self.identity, self.profile)
        second, created = services.resolve_or_create_customer(
            CustomerIdentity(email='  ASHA@Example.com '), make_profile()
        )

        self.assertFalse(created)
        self.assertEqual(first.pk, second.pk)

    def test_identity_matching_two_customers_is_a_conflict(self):
        Customer.objects.create(name='By Email', email='a@example.com', national_id='000000000001')
        Customer.objects.create(name='By Id', email='b@example.com', national_id='000000000002')

        with self.assertRaises(ConflictError):
            services.resolve_or_create_customer(
                CustomerIdentity(email='a@example.com', national_id='000000000002'),
                make_profile(),
            )
        self.assertEqual(Customer.objects.count(), 2)

    def test_new_customer_without_mobile_is_rejected(self):
        """A customer is never registered without a phone number"""

        for mobile in ['', '   ']:
            with self.subTest(mobile=mobile):
                with self.assertRaises(PhoneRequiredError):
                    services.resolve_or_create_customer(self.identity, make_profile(mobile=mobile))

        self.assertEqual(Customer.objects.count(), 0)
        self.assertEqual(CustomerPhone.objects.count(), 0)

    def test_existing_customer_resolves_without_mobile(self):
        first, _ = services.resolve_or_create_customer(self.identity, self.profile)
        second, created = services.resolve_or_create_customer(self.identity, make_profile(mobile=''))

        self.assertFalse(created)
        self.assertEqual(first.pk, second.pk)

    def test_missing_identity_is_rejected(self):
        with self.assertRaises(IdentityRequiredError):
            services.resolve_or_create_customer(CustomerIdentity(email='  '), make_profile())
        self.assertEqual(Customer.objects.count(), 0)

    def test_unique_violation_re_resolves_by_lookup(self):
        """A row created by a concurrent request between lookup and insert is reused"""

        existing = Customer.objects.create(name='Raced', email='asha@example.com')

        with patch('hotel_booking.services._find_customer', side_effect=[None, existing]):
            customer, created = services.resolve_or_create_customer(self.identity, self.profile)

        self.assertFalse(created)
        self.assertEqual(customer.pk, existing.pk)
        self.assertEqual(Customer.objects.count(), 1)


class ReservationWorkflowTestCase(TestCase):
    """Test the atomic create_booking workflow"""

    def setUp(self):
        self.room = Room.objects.create(
            number="101",
            category=Room.Category.ECONOMY,
            price=Decimal("1500.00"),
            capacity=2,
        )
        self.identity = CustomerIdentity(email='guest@example.com', national_id='999988887777')
        self.profile = make_profile()
        self.check_in = date(2024, 6, 1)
        self.check_out = date(2024, 6, 4)

    def _book(self, room_number="101", check_in=None, check_out=None, identity=None):
        return services.create_booking(
            identity or self.identity,
            self.profile,
            room_number,
            check_in or self.check_in,
            check_out or self.check_out,
        )

    def test_three_night_booking_totals_price_times_nights(self):
        result = self._book()

        self.assertEqual(result.total_amount, Decimal("4500.00"))
        booking = Booking.objects.get(pk=result.booking_id)
        self.assertEqual(booking.customer_id, result.customer_id)
        self.assertEqual(booking.room, self.room)
        self.assertTrue(booking.is_active)

        self.room.refresh_from_db()
        self.assertEqual(self.room.status, Room.Status.OCCUPIED)

    def test_booked_room_disappears_from_search_until_checkout(self):
        self.assertIn(self.room, services.list_available_rooms(min_capacity=2))

        result = self._book()
        self.assertNotIn(self.room, services.list_available_rooms(min_capacity=2))

        services.checkout(result.booking_id)
        self.assertIn(self.room, services.list_available_rooms(min_capacity=2))

    def test_invalid_date_range_is_rejected(self):
        for check_in, check_out in [
            (date(2024, 6, 4), date(2024, 6, 1)),
            (date(2024, 6, 1), date(2024, 6, 1)),
        ]:
            with self.subTest(check_in=check_in, check_out=check_out):
                with self.assertRaises(InvalidRangeError):
                    self._book(check_in=check_in, check_out=check_out)

        self.assertEqual(Customer.objects.count(), 0)
        self.assertEqual(Booking.objects.count(), 0)

    def test_unknown_room_is_not_found(self):
        with self.assertRaises(RoomNotFoundError):
            self._book(room_number="999")
        self.assertEqual(Customer.objects.count(), 0)

    def test_occupied_room_rolls_back_new_customer(self):
        """A customer created in a failed booking does not survive"""

        self._book()

        with self.assertRaises(RoomUnavailableError):
            self._book(identity=CustomerIdentity(email='late@example.com'))

        self.assertFalse(Customer.objects.filter(email='late@example.com').exists())
        self.assertEqual(Booking.objects.count(), 1)

    def test_failure_before_status_flip_leaves_no_trace(self):
        with patch('hotel_booking.services._occupy_room', side_effect=DatabaseError("simulated")):
            with self.assertRaises(StoreError):
                self._book()

        self.assertEqual(Booking.objects.count(), 0)
        self.assertEqual(Customer.objects.count(), 0)
        self.assertEqual(CustomerPhone.objects.count(), 0)
        self.room.refresh_from_db()
        self.assertEqual(self.room.status, Room.Status.AVAILABLE)

    def test_status_flip_is_compare_and_set(self):
        """A room taken after it was read cannot be flipped a second time"""

        stale_room = Room.objects.get(pk=self.room.pk)
        Room.objects.filter(pk=self.room.pk).update(status=Room.Status.OCCUPIED)

        with patch('hotel_booking.services._acquire_room', return_value=stale_room):
            with self.assertRaises(RoomUnavailableError):
                self._book()

        self.assertEqual(Booking.objects.count(), 0)
        self.assertEqual(Customer.objects.count(), 0)

    def test_active_booking_constraint_blocks_second_stay(self):
        """Even with a stale available status, a held room cannot be booked again"""

        self._book()
        Room.objects.filter(pk=self.room.pk).update(status=Room.Status.AVAILABLE)

        with self.assertRaises(RoomUnavailableError):
            self._book(identity=CustomerIdentity(email='other@example.com'))

        self.assertEqual(Booking.objects.filter(room=self.room).count(), 1)

    def test_returning_customer_keeps_customer_id(self):
        Room.objects.create(number="102", category=Room.Category.DELUXE, price=Decimal("3000.00"), capacity=2)

        first = self._book()
        second = self._book(room_number="102", check_in=date(2024, 7, 1), check_out=date(2024, 7, 2))

        self.assertEqual(first.customer_id, second.customer_id)
        self.assertEqual(second.total_amount, Decimal("3000.00"))
        self.assertEqual(Customer.objects.count(), 1)


class PaymentLedgerTestCase(TestCase):
    """Test payments recorded against bookings"""

    def setUp(self):
        self.room = Room.objects.create(number="401", category=Room.Category.PRESIDENTIAL,
                                        price=Decimal("15000.00"), capacity=6)
        self.result = services.create_booking(
            CustomerIdentity(email='payment@example.com'),
            make_profile(name='Payment Test Guest'),
            "401",
            date(2024, 6, 1),
            date(2024, 6, 3),
        )

    def test_payment_is_recorded(self):
        payment = services.record_payment(self.result.booking_id, Decimal("30000.00"), Payment.Mode.ONLINE)

        self.assertEqual(payment.booking_id, self.result.booking_id)
        self.assertEqual(payment.amount, Decimal("30000.00"))
        self.assertEqual(payment.mode, Payment.Mode.ONLINE)
        self.assertIsNotNone(payment.paid_at)

    def test_partial_payments_accumulate(self):
        services.record_payment(self.result.booking_id, Decimal("10000.00"))
        services.record_payment(self.result.booking_id, Decimal("5000.00"), Payment.Mode.CARD)

        detail = services.get_booking_detail(self.result.booking_id)
        self.assertEqual(detail.amount_paid, Decimal("15000.00"))
        self.assertEqual(detail.balance_due, Decimal("15000.00"))

    def test_overpayment_is_accepted_with_warning(self):
        with self.assertLogs('hotel_booking.services', level='WARNING') as logs:
            services.record_payment(self.result.booking_id, Decimal("99999.00"))

        self.assertIn('overpaid', '\n'.join(logs.output))
        self.assertEqual(Payment.objects.count(), 1)

    def test_negative_amount_is_rejected(self):
        with self.assertRaises(InvalidPaymentError):
            services.record_payment(self.result.booking_id, Decimal("-5.00"))
        self.assertEqual(Payment.objects.count(), 0)

    def test_unknown_mode_is_rejected(self):
        with self.assertRaises(InvalidPaymentError):
            services.record_payment(self.result.booking_id, Decimal("5.00"), 'bitcoin')
        self.assertEqual(Payment.objects.count(), 0)

    def test_unknown_booking_is_rejected(self):
        with self.assertRaises(BookingNotFoundError):
            services.record_payment(424242, Decimal("100.00"))
        self.assertEqual(Payment.objects.count(), 0)

    def test_payment_does_not_touch_room_status(self):
        services.record_payment(self.result.booking_id, Decimal("30000.00"))

        self.room.refresh_from_db()
        self.assertEqual(self.room.status, Room.Status.OCCUPIED)


class CheckoutTestCase(TestCase):
    """Test room release at checkout"""

    def setUp(self):
        self.room = Room.objects.create(number="201", category=Room.Category.DELUXE,
                                        price=Decimal("3200.00"), capacity=3)
        self.result = services.create_booking(
            CustomerIdentity(email='checkout@example.com'),
            make_profile(),
            "201",
            date(2024, 6, 1),
            date(2024, 6, 2),
        )

    def test_checkout_releases_room(self):
        booking = services.checkout(self.result.booking_id)

        self.assertIsNotNone(booking.checked_out_at)
        self.room.refresh_from_db()
        self.assertEqual(self.room.status, Room.Status.AVAILABLE)

    def test_repeated_checkout_is_idempotent(self):
        first = services.checkout(self.result.booking_id)
        second = services.checkout(self.result.booking_id)

        self.assertEqual(first.checked_out_at, second.checked_out_at)
        self.room.refresh_from_db()
        self.assertEqual(self.room.status, Room.Status.AVAILABLE)

    def test_unknown_booking_is_rejected(self):
        with self.assertRaises(BookingNotFoundError):
            services.checkout(424242)

    def test_stale_checkout_keeps_newer_stay_occupied(self):
        """Checking out an old booking again must not release a room re-booked since"""

        services.checkout(self.result.booking_id)
        services.create_booking(
            CustomerIdentity(email='next@example.com'),
            make_profile(),
            "201",
            date(2024, 6, 2),
            date(2024, 6, 5),
        )

        services.checkout(self.result.booking_id)

        self.room.refresh_from_db()
        self.assertEqual(self.room.status, Room.Status.OCCUPIED)
        self.assertEqual(Booking.objects.filter(room=self.room, checked_out_at__isnull=True).count(), 1)


class QuerySurfaceTestCase(TestCase):
    """Test read-only room search and booking detail"""

    def setUp(self):
        self.suite = Room.objects.create(number="301", category=Room.Category.SUITE,
                                         price=Decimal("6000.00"), capacity=4)
        self.economy = Room.objects.create(number="102", category=Room.Category.ECONOMY,
                                           price=Decimal("1800.00"), capacity=2)
        self.single = Room.objects.create(number="100", category=Room.Category.ECONOMY,
                                          price=Decimal("900.00"), capacity=1)
        self.deluxe = Room.objects.create(number="202", category=Room.Category.DELUXE,
                                          price=Decimal("3500.00"), capacity=3,
                                          status=Room.Status.OCCUPIED)

    def test_available_rooms_filtered_by_capacity_and_sorted_by_price(self):
        rooms = list(services.list_available_rooms(min_capacity=2))
        self.assertEqual(rooms, [self.economy, self.suite])

    def test_available_rooms_filtered_by_category(self):
        rooms = list(services.list_available_rooms(min_capacity=1, category='economy'))
        self.assertEqual(rooms, [self.single, self.economy])

    def test_booking_detail_round_trip(self):
        result = services.create_booking(
            CustomerIdentity(email='detail@example.com'),
            make_profile(name='Detail Guest', mobile='5550001111'),
            "301",
            date(2024, 6, 1),
            date(2024, 6, 4),
        )

        detail = services.get_booking_detail(result.booking_id)

        self.assertEqual(detail.booking.pk, result.booking_id)
        self.assertEqual(detail.booking.check_in, date(2024, 6, 1))
        self.assertEqual(detail.booking.check_out, date(2024, 6, 4))
        self.assertEqual(detail.room, self.suite)
        self.assertEqual(detail.customer.pk, result.customer_id)
        self.assertEqual(detail.phone, '5550001111')
        self.assertEqual(detail.nights, 3)
        self.assertEqual(detail.total_amount, Decimal("18000.00"))
        self.assertEqual(detail.total_amount, result.total_amount)
        self.assertEqual(detail.amount_paid, Decimal("0.00"))

    def test_unknown_booking_detail_is_not_found(self):
        with self.assertRaises(BookingNotFoundError):
            services.get_booking_detail(424242)


class BookingAPITestCase(APITestCase):
    """Test the REST surface over the booking workflow"""

    def setUp(self):
        self.room = Room.objects.create(
            number="101",
            category=Room.Category.ECONOMY,
            price=Decimal("1500.00"),
            capacity=2,
        )
        self.payload = {
            'customer': {
                'name': 'Api Guest',
                'email': 'api@example.com',
                'national_id': '123456789012',
                'mobile': '9000000000',
                'city': 'Chennai',
            },
            'room_number': '101',
            'check_in': '2024-06-01',
            'check_out': '2024-06-04',
        }

    def _create(self, payload=None):
        return self.client.post('/api/bookings/', payload or self.payload, format='json')

    def test_create_booking(self):
        response = self._create()

        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertEqual(response.data['total_amount'], '4500.00')
        self.assertEqual(Booking.objects.get().pk, response.data['booking_id'])
        self.assertEqual(Customer.objects.get().pk, response.data['customer_id'])

    def test_search_hides_booked_room(self):
        response = self.client.get('/api/rooms/', {'min_capacity': 2})
        self.assertEqual([r['number'] for r in response.data], ['101'])

        self._create()

        response = self.client.get('/api/rooms/', {'min_capacity': 2})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, [])

    def test_invalid_min_capacity(self):
        response = self.client.get('/api/rooms/', {'min_capacity': 'two'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'invalid_request')
        self.assertIn('min_capacity', response.data['detail'])

    def test_unknown_room_returns_not_found(self):
        response = self.client.get('/api/rooms/nope/')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'not_found')
        self.assertIn('detail', response.data)

    def test_empty_booking_request_uses_error_shape(self):
        response = self.client.post('/api/bookings/', {}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'invalid_request')
        self.assertIn('room_number', response.data['detail'])

    def test_double_booking_returns_conflict(self):
        self._create()
        response = self._create({**self.payload, 'customer': {**self.payload['customer'], 'email': 'x@example.com',
                                                               'national_id': '000011112222'}})

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'room_unavailable')

    def test_reversed_dates_return_invalid_range(self):
        response = self._create({**self.payload, 'check_in': '2024-06-04', 'check_out': '2024-06-01'})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'invalid_range')
        self.assertEqual(Customer.objects.count(), 0)

    def test_missing_mobile_is_a_validation_error(self):
        customer = dict(self.payload['customer'])
        del customer['mobile']
        response = self._create({**self.payload, 'customer': customer})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'invalid_request')
        self.assertIn('mobile', response.data['detail']['customer'])

    def test_booking_detail(self):
        booking_id = self._create().data['booking_id']

        response = self.client.get(f'/api/bookings/{booking_id}/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['room_number'], '101')
        self.assertEqual(response.data['customer_email'], 'api@example.com')
        self.assertEqual(response.data['customer_phone'], '9000000000')
        self.assertEqual(response.data['nights'], 3)
        self.assertEqual(response.data['total_amount'], '4500.00')
        self.assertEqual(response.data['balance_due'], '4500.00')

    def test_unknown_booking_returns_not_found(self):
        response = self.client.get('/api/bookings/424242/')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'not_found')

    def test_payment_then_checkout(self):
        booking_id = self._create().data['booking_id']

        response = self.client.post('/api/payments/', {
            'booking_id': booking_id,
            'amount': '4500.00',
            'payment_mode': 'upi',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertEqual(Payment.objects.get().pk, response.data['payment_id'])

        url = f'/api/bookings/{booking_id}/checkout/'
        for _ in range(2):
            response = self.client.post(url, format='json')
            self.assertEqual(response.status_code, status.HTTP_200_OK)

        self.room.refresh_from_db()
        self.assertEqual(self.room.status, Room.Status.AVAILABLE)

    def test_payment_for_unknown_booking(self):
        response = self.client.post('/api/payments/', {
            'booking_id': 424242,
            'amount': '10.00',
            'payment_mode': 'cash',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'not_found')

    def test_negative_payment_is_rejected(self):
        booking_id = self._create().data['booking_id']
        response = self.client.post('/api/payments/', {
            'booking_id': booking_id,
            'amount': '-1.00',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(Payment.objects.count(), 0)

    def test_health_check(self):
        response = self.client.get('/health')
        self.assertEqual(response.json(), {'status': 'ok'})
