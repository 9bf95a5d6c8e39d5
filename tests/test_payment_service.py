import asyncio
import json
import unittest

from branchdesk.schemas.payment import PaymentRedirectParams
from branchdesk.services.payment_service import (
    FAILURE_MESSAGE,
    FAILURE_TITLE,
    PaymentFailurePage,
    PaymentSuccessPage,
    RedirectPage,
)

from tests.fakes import ManualScheduler, RecordingNavigator

FAIL_QUERY = "?merchant_oid=A&failed_reason_code=1&failed_reason_msg=x&payment_id=P"


class PaymentRedirectParamsTests(unittest.TestCase):
    def test_parses_all_parameters(self):
        params = PaymentRedirectParams.from_query(FAIL_QUERY)

        self.assertEqual(params.merchant_oid, "A")
        self.assertEqual(params.failed_reason_code, "1")
        self.assertEqual(params.failed_reason_msg, "x")
        self.assertEqual(params.payment_id, "P")

    def test_missing_parameters_are_none(self):
        params = PaymentRedirectParams.from_query("merchant_oid=A&unrelated=1")

        self.assertEqual(params.merchant_oid, "A")
        self.assertIsNone(params.failed_reason_code)
        self.assertIsNone(params.payment_id)

    def test_repeated_parameter_keeps_first_value(self):
        params = PaymentRedirectParams.from_query("merchant_oid=A&merchant_oid=B")

        self.assertEqual(params.merchant_oid, "A")

    def test_accepts_mapping(self):
        params = PaymentRedirectParams.from_query({"payment_id": "P"})

        self.assertEqual(params.payment_id, "P")


class PaymentFailurePageTests(unittest.TestCase):
    def setUp(self):
        self.scheduler = ManualScheduler()
        self.navigator = RecordingNavigator()
        self.page = PaymentFailurePage(self.navigator, self.scheduler)

    def test_mount_logs_parameters_with_timestamp(self):
        with self.assertLogs("branchdesk", level="ERROR") as logs:
            content = self.page.mount(FAIL_QUERY)

        record = json.loads(logs.records[0].getMessage())
        self.assertEqual(record["event"], "payment_failed")
        self.assertEqual(record["merchant_oid"], "A")
        self.assertEqual(record["failed_reason_code"], "1")
        self.assertEqual(record["failed_reason_msg"], "x")
        self.assertEqual(record["payment_id"], "P")
        self.assertIn("T", record["timestamp"])
        self.assertEqual(content.title, FAILURE_TITLE)
        self.assertEqual(content.message, FAILURE_MESSAGE)
        self.assertEqual(content.notice, "5 saniye içinde ana sayfaya yönlendirileceksiniz...")

    def test_navigates_to_root_after_exactly_five_seconds(self):
        self.page.mount(FAIL_QUERY)

        self.scheduler.advance(4)
        self.assertEqual(self.navigator.paths, [])
        self.assertEqual(self.scheduler.next_due, 5.0)
        self.scheduler.advance(1)
        self.assertEqual(self.navigator.paths, ["/"])

        self.scheduler.advance(10)
        self.assertEqual(self.navigator.paths, ["/"])

    def test_unmount_before_delay_prevents_navigation(self):
        self.page.mount(FAIL_QUERY)

        self.scheduler.advance(2)
        self.page.unmount()
        self.scheduler.advance(60)

        self.assertEqual(self.navigator.paths, [])
        self.assertEqual(self.scheduler.pending, 0)
        self.assertFalse(self.page.mounted)

    def test_unmount_after_navigation_is_harmless(self):
        self.page.mount("")
        self.scheduler.advance(5)

        self.page.unmount()

        self.assertEqual(self.navigator.paths, ["/"])

    def test_mount_twice_raises(self):
        self.page.mount("")

        with self.assertRaises(RuntimeError):
            self.page.mount("")

    def test_page_can_be_mounted_again_after_unmount(self):
        self.page.mount(FAIL_QUERY)
        self.scheduler.advance(2)
        self.page.unmount()

        self.page.mount(FAIL_QUERY)
        self.assertTrue(self.page.mounted)
        self.scheduler.advance(4)
        self.assertEqual(self.navigator.paths, [])
        self.scheduler.advance(1)

        self.assertEqual(self.navigator.paths, ["/"])
        self.assertEqual(self.scheduler.pending, 0)

    def test_page_can_be_mounted_again_after_navigation(self):
        self.page.mount("")
        self.scheduler.advance(5)

        self.page.mount("")
        self.scheduler.advance(5)

        self.assertEqual(self.navigator.paths, ["/", "/"])

    def test_base_page_cannot_be_instantiated(self):
        with self.assertRaises(TypeError):
            RedirectPage(self.navigator, self.scheduler)


class PaymentSuccessPageTests(unittest.TestCase):
    def test_success_page_redirects_to_configured_target(self):
        scheduler = ManualScheduler()
        navigator = RecordingNavigator()
        page = PaymentSuccessPage(navigator, scheduler, delay_seconds=3, redirect_to="/orders")

        with self.assertLogs("branchdesk", level="INFO") as logs:
            content = page.mount("merchant_oid=A&payment_id=P")
        scheduler.advance(3)

        self.assertEqual(json.loads(logs.records[0].getMessage())["event"], "payment_succeeded")
        self.assertEqual(content.title, "Ödeme Başarılı!")
        self.assertTrue(content.notice.startswith("3 saniye"))
        self.assertEqual(navigator.paths, ["/orders"])


class LoopSchedulerPageTests(unittest.IsolatedAsyncioTestCase):
    async def test_real_timer_is_cancelled_on_unmount(self):
        navigator = RecordingNavigator()
        page = PaymentFailurePage(navigator, delay_seconds=0.01)

        page.mount(FAIL_QUERY)
        page.unmount()

        await asyncio.sleep(0.05)
        self.assertEqual(navigator.paths, [])


if __name__ == "__main__":
    unittest.main()
